# Copyright (c) 2023 - 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Exception hierarchy for asyncrequest.

Transport errors are carried inside response envelopes and never raised by the
request controller. Lifecycle errors are raised only to callers awaiting a
request's terminal result. Encoding errors are raised immediately while a
request description is being built.
"""

from typing import Any, Optional

__all__ = [
    "AsyncRequestError",
    "RequestLifecycleError",
    "RequestSuspendedError",
    "RequestCancelledError",
    "RequestEncodingError",
    "StringEncodeError",
    "JSONEncodeError",
    "FormEncodeError",
    "ResponseNoDataError",
    "TransportError",
    "TransportCancelledError",
    "InvalidResumeDataError",
]


class AsyncRequestError(Exception):
    """Base class for all asyncrequest errors."""


class RequestLifecycleError(AsyncRequestError):
    """Raised to callers awaiting a request that left the in-progress state
    without reaching a result."""


class RequestSuspendedError(RequestLifecycleError):
    def __init__(self, message: str = "Request suspended"):
        super().__init__(message)


class RequestCancelledError(RequestLifecycleError):
    def __init__(self, message: str = "Request cancelled"):
        super().__init__(message)


class RequestEncodingError(AsyncRequestError):
    """Raised when a request body cannot be encoded."""


class StringEncodeError(RequestEncodingError):
    def __init__(self, text: str, encoding: str):
        self.text = text
        self.encoding = encoding
        super().__init__(f"Failed to encode text body using '{encoding}'")


class JSONEncodeError(RequestEncodingError):
    def __init__(self, value: Any, original_exception: Optional[Exception] = None):
        self.value = value
        self.original_exception = original_exception
        detail = f": {original_exception}" if original_exception else ""
        super().__init__(
            f"Failed to encode {type(value).__name__} as JSON{detail}"
        )


class FormEncodeError(RequestEncodingError):
    def __init__(self, original_exception: Optional[Exception] = None):
        self.original_exception = original_exception
        detail = f": {original_exception}" if original_exception else ""
        super().__init__(f"Failed to encode form body{detail}")


class ResponseNoDataError(AsyncRequestError):
    def __init__(self, message: str = "Response carries no payload"):
        super().__init__(message)


class TransportError(AsyncRequestError):
    """
    Error reported by the transport for one attempt.

    Instances travel inside a ResponseEnvelope; the request controller never
    raises them.
    """

    def __init__(
        self,
        message: str,
        original_exception: Optional[BaseException] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.original_exception = original_exception
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"{super().__str__()} (Status Code: {self.status_code})"
        return super().__str__()


class TransportCancelledError(TransportError):
    def __init__(self, message: str = "Transport task cancelled"):
        super().__init__(message)


class InvalidResumeDataError(AsyncRequestError):
    def __init__(self, message: str = "Resume data could not be decoded"):
        super().__init__(message)
