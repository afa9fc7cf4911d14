# Copyright (c) 2023 - 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Outcome classification chain.

An OutcomeClassifier is an ordered, append-only list of links. Each link
either resolves the envelope to a Classification or returns None to defer to
the next link. When every link defers, the envelope is rejected if it carries
a transport error and accepted otherwise.
"""

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Iterable, Optional, Union

from pydantic import BaseModel, ConfigDict

from asyncrequest.network.envelope import Classification, ResponseEnvelope, Verdict

if TYPE_CHECKING:
    from asyncrequest.network.request import AsyncRequest

logger = logging.getLogger(__name__)

__all__ = [
    "ClassifierLinkKind",
    "ClassifierLink",
    "OutcomeClassifier",
    "default_classification",
]

EnvelopePredicate = Callable[[ResponseEnvelope], bool]
CustomClassifier = Callable[
    ["AsyncRequest", ResponseEnvelope], Union[Classification, Verdict, bool]
]


class ClassifierLinkKind(str, Enum):
    STATUS_ALLOW_LIST = "status_allow_list"  # reject outside the list, else defer
    REJECT_IF = "reject_if"  # reject when predicate holds, else defer
    ACCEPT_IF = "accept_if"  # accept when predicate holds, else reject; never defers
    CUSTOM = "custom"  # callable verdict; rejection stops, acceptance defers


def default_classification(envelope: ResponseEnvelope) -> Classification:
    """Verdict of the implicit tail link: reject iff a transport error is present."""
    if envelope.has_error:
        return Classification.rejected(envelope)
    return Classification.accepted(envelope)


def _expand_status_codes(codes: Iterable[Union[int, range]]) -> frozenset[int]:
    expanded: set[int] = set()
    for code in codes:
        if isinstance(code, range):
            expanded.update(code)
        else:
            expanded.add(int(code))
    return frozenset(expanded)


class ClassifierLink(BaseModel):
    """One unit of an OutcomeClassifier chain."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: ClassifierLinkKind
    allowed_status_codes: frozenset[int] = frozenset()
    predicate: Optional[Callable[..., Any]] = None
    name: Optional[str] = None

    @classmethod
    def status_allow_list(cls, *codes: Union[int, range]) -> "ClassifierLink":
        allowed = _expand_status_codes(codes)
        if not allowed:
            raise ValueError("At least one allowed status code is required")
        return cls(
            kind=ClassifierLinkKind.STATUS_ALLOW_LIST,
            allowed_status_codes=allowed,
            name=f"allowed_status_codes[{len(allowed)}]",
        )

    @classmethod
    def reject_if(
        cls, predicate: EnvelopePredicate, name: Optional[str] = None
    ) -> "ClassifierLink":
        return cls(kind=ClassifierLinkKind.REJECT_IF, predicate=predicate, name=name)

    @classmethod
    def accept_if(
        cls, predicate: EnvelopePredicate, name: Optional[str] = None
    ) -> "ClassifierLink":
        return cls(kind=ClassifierLinkKind.ACCEPT_IF, predicate=predicate, name=name)

    @classmethod
    def custom(
        cls, classifier: CustomClassifier, name: Optional[str] = None
    ) -> "ClassifierLink":
        return cls(kind=ClassifierLinkKind.CUSTOM, predicate=classifier, name=name)

    @property
    def label(self) -> str:
        return self.name or self.kind.value

    def evaluate(
        self, request: "AsyncRequest", envelope: ResponseEnvelope
    ) -> Optional[Classification]:
        """
        Classify the envelope, or return None to defer to the next link.
        """
        if self.kind is ClassifierLinkKind.STATUS_ALLOW_LIST:
            if envelope.http_status_code not in self.allowed_status_codes:
                return Classification.rejected(envelope)
            return None

        if self.kind is ClassifierLinkKind.REJECT_IF:
            if self.predicate(envelope):
                return Classification.rejected(envelope)
            return None

        if self.kind is ClassifierLinkKind.ACCEPT_IF:
            if self.predicate(envelope):
                return Classification.accepted(envelope)
            return Classification.rejected(envelope)

        verdict = self.predicate(request, envelope)
        if isinstance(verdict, Classification):
            verdict = verdict.verdict
        elif isinstance(verdict, bool):
            verdict = Verdict.ACCEPTED if verdict else Verdict.REJECTED
        if Verdict(verdict) is Verdict.REJECTED:
            return Classification.rejected(envelope)
        return None


class OutcomeClassifier:
    """
    Ordered chain of classifier links.

    Links are only ever appended. Chains are read-only during classification
    and can be shared between requests.

    Example:
        classifier = (
            OutcomeClassifier()
            .allowed_status_codes(range(200, 300))
            .reject_if(lambda envelope: envelope.payload == b"")
        )
    """

    def __init__(self, links: Iterable[ClassifierLink] = ()):
        self._links: list[ClassifierLink] = list(links)

    @property
    def links(self) -> tuple[ClassifierLink, ...]:
        return tuple(self._links)

    def __len__(self) -> int:
        return len(self._links)

    def __repr__(self) -> str:
        labels = ", ".join(link.label for link in self._links)
        return f"OutcomeClassifier([{labels}])"

    def add_next(
        self, link: Union[ClassifierLink, "OutcomeClassifier"]
    ) -> "OutcomeClassifier":
        """Append a link (or every link of another chain) to the tail."""
        if isinstance(link, OutcomeClassifier):
            self._links.extend(link.links)
        else:
            self._links.append(link)
        return self

    def allowed_status_codes(self, *codes: Union[int, range]) -> "OutcomeClassifier":
        return self.add_next(ClassifierLink.status_allow_list(*codes))

    def reject_if(
        self, predicate: EnvelopePredicate, name: Optional[str] = None
    ) -> "OutcomeClassifier":
        return self.add_next(ClassifierLink.reject_if(predicate, name))

    def accept_if(
        self, predicate: EnvelopePredicate, name: Optional[str] = None
    ) -> "OutcomeClassifier":
        return self.add_next(ClassifierLink.accept_if(predicate, name))

    def custom(
        self, classifier: CustomClassifier, name: Optional[str] = None
    ) -> "OutcomeClassifier":
        return self.add_next(ClassifierLink.custom(classifier, name))

    def classify(
        self, request: "AsyncRequest", envelope: ResponseEnvelope
    ) -> Classification:
        """
        Walk the chain until a link resolves; fall back to the default tail.

        A link that raises rejects the envelope; the exception is logged.
        """
        for index, link in enumerate(self._links):
            try:
                decision = link.evaluate(request, envelope)
            except Exception:
                logger.exception(
                    f"Classifier link {index} ({link.label}) raised; rejecting"
                )
                return Classification.rejected(envelope)
            if decision is not None:
                logger.debug(
                    f"Classifier link {index} ({link.label}) resolved: "
                    f"{decision.verdict.value}"
                )
                return decision

        decision = default_classification(envelope)
        logger.debug(f"Default classification: {decision.verdict.value}")
        return decision
