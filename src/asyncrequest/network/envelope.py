# Copyright (c) 2023 - 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Normalized attempt results.

A ResponseEnvelope is what one attempt produced: an optional payload, optional
response metadata, and an optional transport error. A Classification is the
verdict the outcome classifier reaches for an envelope.
"""

from enum import Enum
from pathlib import Path
from typing import Any, Generic, Optional, TypeVar

import anyio
import orjson
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from asyncrequest.errors import ResponseNoDataError

T = TypeVar("T")

__all__ = [
    "ResponseMetadata",
    "ResponseEnvelope",
    "Verdict",
    "Classification",
]


class ResponseMetadata(BaseModel):
    """Status line and headers of a transport response."""

    model_config = ConfigDict(frozen=True)

    status_code: int
    headers: dict[str, str] = Field(default_factory=dict)
    url: Optional[str] = None

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return default


class ResponseEnvelope(BaseModel, Generic[T]):
    """
    The normalized result of one attempt.

    Equality covers `payload` and `metadata` only, so envelopes from retried
    attempts compare equal regardless of the transient error objects they
    carry.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    payload: Optional[T] = None
    metadata: Optional[ResponseMetadata] = None
    error: Optional[BaseException] = None

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, ResponseEnvelope):
            return NotImplemented
        return self.payload == other.payload and self.metadata == other.metadata

    __hash__ = None  # type: ignore[assignment]

    @property
    def is_http_response(self) -> bool:
        return self.metadata is not None

    @property
    def http_status_code(self) -> int:
        """Status code of the response, or -1 when there is no response."""
        if self.metadata is None:
            return -1
        return self.metadata.status_code

    @property
    def has_error(self) -> bool:
        return self.error is not None

    def _payload_bytes(self) -> bytes:
        if self.payload is None:
            raise ResponseNoDataError()
        if isinstance(self.payload, Path):
            return self.payload.read_bytes()
        if isinstance(self.payload, str):
            return self.payload.encode("utf-8")
        return bytes(self.payload)  # type: ignore[arg-type]

    def decode_json(self, type_: Any = None) -> Any:
        """
        Decode the payload as JSON.

        Args:
            type_: Optional type (pydantic model, dataclass, typing construct)
                to validate the decoded value into.

        Raises:
            ResponseNoDataError: If the envelope carries no payload.
            orjson.JSONDecodeError: If the payload is not valid JSON.
            pydantic.ValidationError: If the value does not match `type_`.
        """
        data = orjson.loads(self._payload_bytes())
        if type_ is None:
            return data
        return TypeAdapter(type_).validate_python(data)

    def read_downloaded(self) -> bytes:
        """
        Read the downloaded content of a file payload.

        Raises:
            ResponseNoDataError: If the envelope carries no payload.
        """
        return self._payload_bytes()

    async def aread_downloaded(self) -> bytes:
        """Async variant of `read_downloaded` for file payloads."""
        if isinstance(self.payload, Path):
            return await anyio.Path(self.payload).read_bytes()
        return self._payload_bytes()


class Verdict(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class Classification(BaseModel):
    """Binary verdict for an envelope, produced by an OutcomeClassifier."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    verdict: Verdict
    envelope: ResponseEnvelope

    @classmethod
    def accepted(cls, envelope: ResponseEnvelope) -> "Classification":
        return cls(verdict=Verdict.ACCEPTED, envelope=envelope)

    @classmethod
    def rejected(cls, envelope: ResponseEnvelope) -> "Classification":
        return cls(verdict=Verdict.REJECTED, envelope=envelope)

    @property
    def is_accepted(self) -> bool:
        return self.verdict is Verdict.ACCEPTED

    @property
    def is_rejected(self) -> bool:
        return self.verdict is Verdict.REJECTED
