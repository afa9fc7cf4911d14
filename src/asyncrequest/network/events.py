# Copyright (c) 2023 - 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Request lifecycle states and the event record that tracks them.

RequestState is the single observable value a request holds at any time.
RequestLifecycleEvent keeps timing, attempt and log information for
diagnostics; it mirrors the lifecycle but never drives it.
"""

import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydapter.protocols.temporal import Temporal

from asyncrequest.network.envelope import ResponseEnvelope


class RequestStatus(str, Enum):
    """Possible states of a request."""

    IN_PROGRESS = "IN_PROGRESS"  # An attempt is running or being evaluated
    COMPLETED = "COMPLETED"  # Final attempt classified as accepted
    FAILED = "FAILED"  # Final attempt classified as rejected
    SUSPENDED = "SUSPENDED"  # Active attempt paused, can resume
    CANCELLED = "CANCELLED"  # Aborted; sticky


TERMINAL_STATUSES = frozenset(
    {RequestStatus.COMPLETED, RequestStatus.FAILED, RequestStatus.CANCELLED}
)


class RequestState(BaseModel):
    """
    Lifecycle state of a request. COMPLETED and FAILED carry the envelope of
    the final attempt; the other states carry none.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    status: RequestStatus
    envelope: Optional[ResponseEnvelope] = None

    @classmethod
    def in_progress(cls) -> "RequestState":
        return cls(status=RequestStatus.IN_PROGRESS)

    @classmethod
    def completed(cls, envelope: ResponseEnvelope) -> "RequestState":
        return cls(status=RequestStatus.COMPLETED, envelope=envelope)

    @classmethod
    def failed(cls, envelope: ResponseEnvelope) -> "RequestState":
        return cls(status=RequestStatus.FAILED, envelope=envelope)

    @classmethod
    def suspended(cls) -> "RequestState":
        return cls(status=RequestStatus.SUSPENDED)

    @classmethod
    def cancelled(cls) -> "RequestState":
        return cls(status=RequestStatus.CANCELLED)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class RequestLifecycleEvent(Temporal):
    """
    Event class for tracking the lifecycle of a request.

    This class maintains the status, timing, attempt count and log for a
    request as it progresses through its attempts. `created_at` and
    `updated_at` come from the Temporal base.
    """

    request_id: str
    status: RequestStatus = RequestStatus.IN_PROGRESS
    operation: Optional[str] = None

    # Request details
    url: Optional[str] = None
    method: Optional[str] = None

    # Attempts
    attempts: int = 0
    retries: int = 0
    last_status_code: Optional[int] = None
    last_error: Optional[str] = None

    # Timing
    started_at: Optional[datetime.datetime] = None
    completed_at: Optional[datetime.datetime] = None  # or failed_at / cancelled_at

    # Logs/Metadata
    logs: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_serializer("started_at", "completed_at")
    def _serialize_various_dt(self, v: Optional[datetime.datetime]) -> Optional[str]:
        return v.isoformat() if v else None

    def _update_timestamp(self) -> None:
        """Update the updated_at timestamp to the current time."""
        self.updated_at = _utcnow()

    def update_status(self, new_status: RequestStatus) -> None:
        """
        Update the status of the request and record the timestamp.

        Args:
            new_status: The new status to set.
        """
        old_status = self.status
        self.status = new_status

        if old_status != new_status:
            self.add_log(
                f"Status changed from {old_status.value} to {new_status.value}"
            )

        if new_status in TERMINAL_STATUSES and not self.completed_at:
            self.completed_at = _utcnow()

        self._update_timestamp()

    def record_attempt(self, attempt: int) -> None:
        """Record that attempt number `attempt` (1-based) has started."""
        self.attempts = attempt
        if attempt == 1:
            self.started_at = _utcnow()
        else:
            self.retries = attempt - 1
        self.add_log(f"Attempt {attempt} started")

    def record_outcome(self, envelope: ResponseEnvelope, verdict: str) -> None:
        """Record the envelope of a finished attempt and its verdict."""
        self.last_status_code = envelope.http_status_code
        self.last_error = str(envelope.error) if envelope.error else None
        self.add_log(
            f"Attempt {self.attempts} finished with status code "
            f"{envelope.http_status_code}: {verdict}"
        )

    def add_log(self, message: str) -> None:
        """
        Add a log message to the request's log.

        Args:
            message: The message to add.
        """
        self.logs.append(f"{_utcnow().isoformat()} - {message}")
        self._update_timestamp()
