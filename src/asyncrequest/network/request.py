# Copyright (c) 2023 - 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Request controller.

AsyncRequest drives one logical request across attempts: it starts an attempt
through its AttemptAdapter, classifies the finished attempt, asks the retry
policy whether to replay it, and publishes the resulting lifecycle state.
"""

import asyncio
import logging
import uuid
from typing import Any, Callable, Generator, Optional

from asyncrequest.async_utils import Observation, ObservableValue, ValueSubscription
from asyncrequest.errors import (
    RequestCancelledError,
    RequestSuspendedError,
    TransportError,
)
from asyncrequest.network.adapter import AttemptAdapter, OperationKind
from asyncrequest.network.classifier import OutcomeClassifier
from asyncrequest.network.envelope import Classification, ResponseEnvelope
from asyncrequest.network.events import (
    RequestLifecycleEvent,
    RequestState,
    RequestStatus,
)
from asyncrequest.network.primitives import RequestDescription
from asyncrequest.network.retry import RetryPolicy

logger = logging.getLogger(__name__)

__all__ = ["AsyncRequest"]


class AsyncRequest:
    """
    Observable lifecycle of one logical request.

    The first attempt starts on construction, so an AsyncRequest must be
    created inside a running event loop. Attempt completions are handed to a
    single evaluation task per request, which classifies them, consults the
    retry policy and either replays the attempt or publishes a terminal
    state. CANCELLED, COMPLETED and FAILED are final: later controls and late
    decisions do not change them.

    Example:
        request = AsyncRequest(
            AttemptAdapter(transport, OperationKind.DATA, request=description),
            OutcomeClassifier().allowed_status_codes(range(200, 300)),
            RetryPolicy().retry_if_rejected(max=2),
        )
        envelope = await request.response()
    """

    def __init__(
        self,
        adapter: AttemptAdapter,
        classifier: Optional[OutcomeClassifier] = None,
        retry_policy: Optional[RetryPolicy] = None,
        *,
        request_id: Optional[str] = None,
    ):
        self._loop = asyncio.get_running_loop()
        self.adapter = adapter
        self.classifier = classifier if classifier is not None else OutcomeClassifier()
        # Each request owns its retry budgets, even when a policy is reused.
        self.retry_policy = (
            retry_policy if retry_policy is not None else RetryPolicy()
        ).fresh()
        self.request_id = request_id or uuid.uuid4().hex

        self._state: ObservableValue[RequestState] = ObservableValue(
            RequestState.in_progress(), name=f"state:{self.request_id}"
        )
        self._progress: ObservableValue[float] = ObservableValue(
            0.0, name=f"progress:{self.request_id}"
        )
        self._inbox: asyncio.Queue[Optional[tuple[int, ResponseEnvelope]]] = (
            asyncio.Queue()
        )

        description = adapter.request
        self.event = RequestLifecycleEvent(
            request_id=self.request_id,
            operation=adapter.kind.value,
            url=description.url if description else None,
            method=description.method.value if description else None,
        )

        attempt = self._start_attempt()
        self._driver = self._loop.create_task(
            self._drive(attempt), name=f"asyncrequest-{self.request_id}"
        )
        self._driver.add_done_callback(self._on_driver_done)

    def __repr__(self) -> str:
        return (
            f"AsyncRequest(id={self.request_id!r}, kind={self.kind.value}, "
            f"status={self.status.value}, attempts={self.attempts})"
        )

    # Observable state

    @property
    def description(self) -> Optional[RequestDescription]:
        """Request description attempts are issued from (None for resumed downloads)."""
        return self.adapter.request

    @property
    def kind(self) -> OperationKind:
        return self.adapter.kind

    @property
    def supports_resume_data(self) -> bool:
        return self.adapter.supports_resume_data

    @property
    def state(self) -> RequestState:
        return self._state.value

    @property
    def status(self) -> RequestStatus:
        return self._state.value.status

    @property
    def progress(self) -> float:
        return self._progress.value

    @property
    def attempts(self) -> int:
        return self.adapter.attempt

    def observe_state(self, callback: Callable[[RequestState], Any]) -> Observation:
        return self._state.observe(callback)

    def observe_progress(self, callback: Callable[[float], Any]) -> Observation:
        return self._progress.observe(callback)

    def subscribe_state(self) -> ValueSubscription[RequestState]:
        return self._state.subscribe()

    def subscribe_progress(self) -> ValueSubscription[float]:
        return self._progress.subscribe()

    # Lifecycle controls

    def suspend(self) -> None:
        """
        Pause the active attempt and move to SUSPENDED.

        Valid from IN_PROGRESS and SUSPENDED. On a COMPLETED, FAILED or
        CANCELLED request this is a logged no-op, since terminal states are
        final.
        """
        if self._ignored_on_terminal("suspend"):
            return
        self.adapter.suspend()
        self._transition(RequestState.suspended())

    def resume(self) -> None:
        """
        Continue the active attempt and move to IN_PROGRESS.

        Like `suspend()`, this does nothing once the request is COMPLETED,
        FAILED or CANCELLED.
        """
        if self._ignored_on_terminal("resume"):
            return
        self.adapter.resume()
        self._transition(RequestState.in_progress())

    def cancel(self) -> None:
        """Abort the active attempt and move to CANCELLED."""
        if self._ignored_on_terminal("cancel"):
            return
        self.adapter.cancel()
        self._mark_cancelled()

    async def cancel_producing_resume_data(self) -> Optional[bytes]:
        """
        Cancel the request, returning data a new download can resume from.

        Returns:
            Opaque resume data, or None when the operation is not a download
            or the transport cannot resume it.
        """
        if self._ignored_on_terminal("cancel_producing_resume_data"):
            return None
        self._mark_cancelled()
        resume_data = await self.adapter.cancel_producing_resume_data()
        logger.debug(
            f"Request {self.request_id} cancelled "
            f"{'with' if resume_data else 'without'} resume data"
        )
        return resume_data

    # Awaiting the result

    async def response(self) -> ResponseEnvelope:
        """
        Wait until the request leaves IN_PROGRESS.

        Returns:
            The envelope of the final attempt for COMPLETED and FAILED.

        Raises:
            RequestSuspendedError: If the request is (or becomes) suspended.
            RequestCancelledError: If the request is (or becomes) cancelled.
        """
        state = await self._state.wait_for(
            lambda s: s.status is not RequestStatus.IN_PROGRESS
        )
        if state.status is RequestStatus.SUSPENDED:
            raise RequestSuspendedError()
        if state.status is RequestStatus.CANCELLED:
            raise RequestCancelledError()
        return state.envelope

    def __await__(self) -> Generator[Any, None, ResponseEnvelope]:
        return self.response().__await__()

    async def aclose(self) -> None:
        """Cancel the request if still running and stop its evaluation task."""
        if not self.state.is_terminal:
            self.cancel()
        if not self._driver.done():
            self._driver.cancel()
        await asyncio.gather(self._driver, return_exceptions=True)

    async def __aenter__(self) -> "AsyncRequest":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    # Internals

    def _start_attempt(self) -> int:
        attempt = self.adapter.start(self._receive_envelope, self._progress.set)
        self.event.record_attempt(attempt)
        if self.status is RequestStatus.SUSPENDED:
            self.adapter.suspend()
        return attempt

    def _receive_envelope(self, attempt: int, envelope: ResponseEnvelope) -> None:
        self._inbox.put_nowait((attempt, envelope))

    async def _next_envelope(self, attempt: int) -> Optional[ResponseEnvelope]:
        while True:
            item = await self._inbox.get()
            if self.status is RequestStatus.CANCELLED:
                return None
            if item is None:
                continue
            received_attempt, envelope = item
            if received_attempt != attempt:
                logger.debug(
                    f"Request {self.request_id}: dropping completion of stale "
                    f"attempt {received_attempt} (current {attempt})"
                )
                continue
            return envelope

    async def _drive(self, attempt: int) -> None:
        while True:
            envelope = await self._next_envelope(attempt)
            if envelope is None:
                return

            classification = self.classifier.classify(self, envelope)
            self.event.record_outcome(envelope, classification.verdict.value)

            retry = await self._should_retry(classification)
            if self.status is RequestStatus.CANCELLED:
                logger.debug(
                    f"Request {self.request_id}: cancelled during retry evaluation"
                )
                return

            if not retry:
                if classification.is_accepted:
                    self._transition(RequestState.completed(classification.envelope))
                else:
                    self._transition(RequestState.failed(classification.envelope))
                return

            logger.debug(
                f"Request {self.request_id}: retrying after attempt {attempt} "
                f"({classification.verdict.value})"
            )
            self.adapter.discard()
            try:
                attempt = self._start_attempt()
            except Exception as e:
                logger.exception(
                    f"Request {self.request_id}: could not start attempt "
                    f"{self.attempts}; failing"
                )
                error = TransportError(
                    f"Could not start retry attempt: {e}", original_exception=e
                )
                self._transition(RequestState.failed(ResponseEnvelope(error=error)))
                return

    async def _should_retry(self, classification: Classification) -> bool:
        try:
            return bool(await self.retry_policy.should_retry(self, classification))
        except Exception:
            logger.exception(
                f"Request {self.request_id}: retry policy raised; not retrying"
            )
            return False

    def _mark_cancelled(self) -> None:
        self._transition(RequestState.cancelled())
        self._inbox.put_nowait(None)

    def _ignored_on_terminal(self, operation: str) -> bool:
        if self.state.is_terminal:
            logger.debug(
                f"Request {self.request_id}: {operation}() ignored in "
                f"{self.status.value} state"
            )
            return True
        return False

    def _transition(self, state: RequestState) -> bool:
        current = self._state.value
        if current.is_terminal:
            logger.warning(
                f"Request {self.request_id}: refusing transition "
                f"{current.status.value} -> {state.status.value}"
            )
            return False
        if not self._state.set(state):
            return False

        logger.debug(
            f"Request {self.request_id}: {current.status.value} -> {state.status.value}"
        )
        self.event.update_status(state.status)
        if state.is_terminal:
            self.adapter.close()
            self._state.close()
            self._progress.close()
        return True

    def _on_driver_done(self, task: "asyncio.Task[None]") -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                f"Request {self.request_id}: evaluation task failed",
                exc_info=exc,
            )
