"""
Network module for asyncrequest.

This module provides the request lifecycle controller, the outcome
classification and retry decision chains, and the transports attempts run on.
"""

from .adapter import AttemptAdapter, OperationKind
from .classifier import ClassifierLink, ClassifierLinkKind, OutcomeClassifier
from .client import DownloadResumeState, HttpxTransport
from .envelope import Classification, ResponseEnvelope, ResponseMetadata, Verdict
from .events import RequestLifecycleEvent, RequestState, RequestStatus
from .primitives import (
    CachePolicy,
    HTTPContentType,
    HTTPMethod,
    RequestDescription,
    TransportConfig,
)
from .request import AsyncRequest
from .retry import RetryBudget, RetryLink, RetryLinkKind, RetryPolicy
from .session import RequestSession
from .transport import ProgressObservation, Transport, TransportTask

__all__ = [
    # Controller
    "AsyncRequest",
    "RequestSession",

    # Lifecycle
    "RequestState",
    "RequestStatus",
    "RequestLifecycleEvent",

    # Results
    "ResponseEnvelope",
    "ResponseMetadata",
    "Classification",
    "Verdict",

    # Chains
    "OutcomeClassifier",
    "ClassifierLink",
    "ClassifierLinkKind",
    "RetryPolicy",
    "RetryLink",
    "RetryLinkKind",
    "RetryBudget",

    # Transport
    "AttemptAdapter",
    "OperationKind",
    "Transport",
    "TransportTask",
    "ProgressObservation",
    "HttpxTransport",
    "DownloadResumeState",

    # Primitives
    "RequestDescription",
    "HTTPMethod",
    "HTTPContentType",
    "CachePolicy",
    "TransportConfig",
]
