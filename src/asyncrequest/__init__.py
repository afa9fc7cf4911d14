"""
asyncrequest: observable, retryable asynchronous network requests.
"""

from asyncrequest.errors import (
    AsyncRequestError,
    RequestCancelledError,
    RequestSuspendedError,
)
from asyncrequest.network import (
    AsyncRequest,
    OutcomeClassifier,
    RequestDescription,
    RequestSession,
    RequestState,
    RequestStatus,
    ResponseEnvelope,
    RetryPolicy,
)

__version__ = "0.1.0"

__all__ = [
    "AsyncRequest",
    "RequestSession",
    "RequestDescription",
    "RequestState",
    "RequestStatus",
    "ResponseEnvelope",
    "OutcomeClassifier",
    "RetryPolicy",
    "AsyncRequestError",
    "RequestSuspendedError",
    "RequestCancelledError",
]
