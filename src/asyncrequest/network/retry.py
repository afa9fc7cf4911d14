# Copyright (c) 2023 - 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Retry decision chain.

A RetryPolicy is an ordered, append-only list of links evaluated after an
attempt has been classified. Each link receives a `proceed` continuation that
evaluates the rest of the chain; a link defers by returning `await proceed()`.
The implicit tail never retries.

Links may await (predicates can be coroutine functions, bounded links can
sleep between attempts). Bounded links own a RetryBudget that persists across
the attempts of every request evaluated with that link instance.
"""

import logging
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Iterable,
    Optional,
    Union,
)

import anyio
from pydantic import BaseModel, ConfigDict, Field

from asyncrequest.network.envelope import Classification
from asyncrequest.utils import call_maybe_async

if TYPE_CHECKING:
    from asyncrequest.network.request import AsyncRequest

logger = logging.getLogger(__name__)

__all__ = [
    "RetryBudget",
    "RetryLinkKind",
    "RetryLink",
    "RetryPolicy",
]

ClassificationPredicate = Callable[[Classification], Union[bool, Awaitable[bool]]]
CustomRetryDecision = Callable[
    ["AsyncRequest", Classification], Union[bool, Awaitable[bool]]
]
Proceed = Callable[[], Awaitable[bool]]


class RetryBudget(BaseModel):
    """Mutable retry counter owned by one bounded retry link."""

    maximum: int = Field(ge=0)
    delay: float = Field(default=0.0, ge=0)
    backoff_factor: float = Field(default=1.0, gt=0)
    count: int = 0

    @property
    def exhausted(self) -> bool:
        return self.count >= self.maximum

    @property
    def remaining(self) -> int:
        return max(self.maximum - self.count, 0)

    def next_delay(self) -> float:
        """Seconds to wait before the next approved retry."""
        return self.delay * (self.backoff_factor**self.count)

    def consume(self) -> int:
        self.count += 1
        return self.count

    def reset(self) -> None:
        self.count = 0

    def fresh(self) -> "RetryBudget":
        return RetryBudget(
            maximum=self.maximum, delay=self.delay, backoff_factor=self.backoff_factor
        )


class RetryLinkKind(str, Enum):
    BOUNDED = "bounded"  # budgeted retry on rejection, also counts downstream retries
    RETRY_IF = "retry_if"  # retry when predicate holds, else defer
    DO_NOT_RETRY_IF = "do_not_retry_if"  # retry when predicate does NOT hold, else defer
    CUSTOM = "custom"  # retry when callable approves, else defer


class RetryLink(BaseModel):
    """One unit of a RetryPolicy chain."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: RetryLinkKind
    predicate: Optional[Callable[..., Any]] = None
    budget: Optional[RetryBudget] = None
    name: Optional[str] = None

    @classmethod
    def bounded(
        cls, maximum: int, delay: float = 0.0, backoff_factor: float = 1.0
    ) -> "RetryLink":
        return cls(
            kind=RetryLinkKind.BOUNDED,
            budget=RetryBudget(
                maximum=maximum, delay=delay, backoff_factor=backoff_factor
            ),
            name=f"retry_if_rejected(max={maximum})",
        )

    @classmethod
    def retry_if(
        cls, predicate: ClassificationPredicate, name: Optional[str] = None
    ) -> "RetryLink":
        return cls(kind=RetryLinkKind.RETRY_IF, predicate=predicate, name=name)

    @classmethod
    def do_not_retry_if(
        cls, predicate: ClassificationPredicate, name: Optional[str] = None
    ) -> "RetryLink":
        return cls(kind=RetryLinkKind.DO_NOT_RETRY_IF, predicate=predicate, name=name)

    @classmethod
    def custom(
        cls, decision: CustomRetryDecision, name: Optional[str] = None
    ) -> "RetryLink":
        return cls(kind=RetryLinkKind.CUSTOM, predicate=decision, name=name)

    @property
    def label(self) -> str:
        return self.name or self.kind.value

    def fresh(self) -> "RetryLink":
        """Copy of this link; bounded links get a new, zeroed budget."""
        if self.budget is None:
            return self
        return self.model_copy(update={"budget": self.budget.fresh()})

    async def decide(
        self,
        request: "AsyncRequest",
        classification: Classification,
        proceed: Proceed,
    ) -> bool:
        if self.kind is RetryLinkKind.BOUNDED:
            return await self._decide_bounded(classification, proceed)

        if self.kind is RetryLinkKind.RETRY_IF:
            if await call_maybe_async(self.predicate, classification):
                return True
            return await proceed()

        if self.kind is RetryLinkKind.DO_NOT_RETRY_IF:
            # Retries when the condition is absent; defers when it holds.
            if not await call_maybe_async(self.predicate, classification):
                return True
            return await proceed()

        if await call_maybe_async(self.predicate, request, classification):
            return True
        return await proceed()

    async def _decide_bounded(
        self, classification: Classification, proceed: Proceed
    ) -> bool:
        budget = self.budget
        if budget.exhausted:
            logger.debug(f"{self.label}: budget exhausted ({budget.count})")
            return False

        if classification.is_accepted and not await proceed():
            return False

        delay = budget.next_delay()
        if delay > 0:
            await anyio.sleep(delay)
        count = budget.consume()
        logger.debug(f"{self.label}: approved retry {count}/{budget.maximum}")
        return True


class RetryPolicy:
    """
    Ordered chain of retry links.

    Example:
        policy = (
            RetryPolicy()
            .retry_if_rejected(max=3, delay=0.5, backoff_factor=2.0)
            .retry_if(lambda c: c.envelope.http_status_code == 503)
        )
    """

    def __init__(self, links: Iterable[RetryLink] = ()):
        self._links: list[RetryLink] = list(links)

    @property
    def links(self) -> tuple[RetryLink, ...]:
        return tuple(self._links)

    def __len__(self) -> int:
        return len(self._links)

    def __repr__(self) -> str:
        labels = ", ".join(link.label for link in self._links)
        return f"RetryPolicy([{labels}])"

    def add_next(self, link: Union[RetryLink, "RetryPolicy"]) -> "RetryPolicy":
        """Append a link (or every link of another chain) to the tail."""
        if isinstance(link, RetryPolicy):
            self._links.extend(link.links)
        else:
            self._links.append(link)
        return self

    def retry_if_rejected(
        self, max: int, delay: float = 0.0, backoff_factor: float = 1.0
    ) -> "RetryPolicy":
        return self.add_next(RetryLink.bounded(max, delay, backoff_factor))

    def retry_if(
        self, predicate: ClassificationPredicate, name: Optional[str] = None
    ) -> "RetryPolicy":
        return self.add_next(RetryLink.retry_if(predicate, name))

    def do_not_retry_if(
        self, predicate: ClassificationPredicate, name: Optional[str] = None
    ) -> "RetryPolicy":
        return self.add_next(RetryLink.do_not_retry_if(predicate, name))

    def retry_when(
        self, decision: CustomRetryDecision, name: Optional[str] = None
    ) -> "RetryPolicy":
        return self.add_next(RetryLink.custom(decision, name))

    def fresh(self) -> "RetryPolicy":
        """Equivalent chain whose bounded links start with zeroed budgets."""
        return RetryPolicy(link.fresh() for link in self._links)

    async def should_retry(
        self, request: "AsyncRequest", classification: Classification
    ) -> bool:
        links = tuple(self._links)

        async def evaluate(index: int) -> bool:
            if index >= len(links):
                return False
            link = links[index]
            decision = await link.decide(
                request, classification, lambda: evaluate(index + 1)
            )
            logger.debug(f"Retry link {index} ({link.label}) decided: {decision}")
            return decision

        return await evaluate(0)
