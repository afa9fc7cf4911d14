# Copyright (c) 2023 - 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Transport collaborator interface.

A Transport creates callback-driven tasks, one per attempt. A task does not
start until `resume()` is called. When it finishes, successfully or not, it
invokes its completion handler exactly once with (payload, metadata, error);
the handler may be called from any thread.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Optional, Protocol

from asyncrequest.network.envelope import ResponseMetadata
from asyncrequest.network.primitives import RequestDescription

logger = logging.getLogger(__name__)

__all__ = [
    "CompletionHandler",
    "ProgressObservation",
    "TransportTask",
    "Transport",
]


class CompletionHandler(Protocol):
    def __call__(
        self,
        payload: Any,
        metadata: Optional[ResponseMetadata],
        error: Optional[BaseException],
    ) -> None: ...


class ProgressObservation:
    """Registration of a progress callback on a TransportTask."""

    def __init__(self, task: "TransportTask", callback: Callable[[float], None]):
        self._task = task
        self._callback = callback
        self._valid = True

    @property
    def valid(self) -> bool:
        return self._valid

    def invalidate(self) -> None:
        if self._valid:
            self._valid = False
            self._task._observations.discard(self)

    def _deliver(self, fraction: float) -> None:
        if self._valid:
            self._callback(fraction)


class TransportTask(ABC):
    """
    Handle for one attempt against a transport.

    Subclasses implement the lifecycle controls and call `_set_progress`
    and `_complete` as the attempt advances.
    """

    def __init__(self, completion: CompletionHandler):
        self._completion = completion
        self._completed = False
        self._progress = 0.0
        self._observations: set[ProgressObservation] = set()

    @property
    def progress(self) -> float:
        return self._progress

    @property
    def completed(self) -> bool:
        return self._completed

    def observe_progress(self, callback: Callable[[float], None]) -> ProgressObservation:
        """Register a progress callback; it receives the current fraction first."""
        observation = ProgressObservation(self, callback)
        self._observations.add(observation)
        observation._deliver(self._progress)
        return observation

    def _set_progress(self, fraction: float) -> None:
        fraction = min(max(fraction, 0.0), 1.0)
        if fraction == self._progress:
            return
        self._progress = fraction
        for observation in list(self._observations):
            observation._deliver(fraction)

    def _complete(
        self,
        payload: Any,
        metadata: Optional[ResponseMetadata],
        error: Optional[BaseException],
    ) -> None:
        if self._completed:
            return
        self._completed = True
        self._completion(payload, metadata, error)

    @abstractmethod
    def resume(self) -> None:
        """Start the task, or continue it after `suspend()`."""

    @abstractmethod
    def suspend(self) -> None:
        """Pause the task; a no-op if it is already paused or finished."""

    @abstractmethod
    def cancel(self) -> None:
        """Abort the task."""

    async def cancel_producing_resume_data(self) -> Optional[bytes]:
        """
        Abort the task and return data a new task can resume from.

        Tasks that cannot resume return None.
        """
        self.cancel()
        return None

    def release(self) -> None:
        """Release resources held by a finished task that is being discarded."""
        for observation in list(self._observations):
            observation.invalidate()


class Transport(ABC):
    """Factory for transport tasks."""

    @abstractmethod
    def data_task(
        self, request: RequestDescription, completion: CompletionHandler
    ) -> TransportTask:
        """Task whose payload is the response body as bytes."""

    @abstractmethod
    def upload_task(
        self,
        request: RequestDescription,
        completion: CompletionHandler,
        *,
        data: Optional[bytes] = None,
        file: Optional[Path] = None,
    ) -> TransportTask:
        """Task that sends `data` or the content of `file` as the body."""

    @abstractmethod
    def download_task(
        self, request: RequestDescription, completion: CompletionHandler
    ) -> TransportTask:
        """Task whose payload is the Path of the downloaded file."""

    @abstractmethod
    def download_task_with_resume_data(
        self, resume_data: bytes, completion: CompletionHandler
    ) -> TransportTask:
        """Task that continues a download from resume data."""

    def validate_resume_data(self, resume_data: bytes) -> None:
        """
        Check resume data before a task is built from it.

        Raises:
            InvalidResumeDataError: If the transport cannot use the data.
        """

    async def aclose(self) -> None:
        """Release transport-wide resources."""
