# Copyright (c) 2023 - 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Asynchronous utilities: a push-updated observable value that broadcasts every
change to callback observers and to async-iterator subscribers built on anyio
memory object streams.
"""

import logging
import math
from typing import Any, Callable, Generic, Optional, TypeVar

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

T = TypeVar("T")

logger = logging.getLogger(__name__)

__all__ = [
    "ObservableValue",
    "Observation",
    "ValueSubscription",
]


class Observation:
    """Handle for a callback registered on an ObservableValue."""

    def __init__(self, owner: "ObservableValue[Any]", callback: Callable[[Any], Any]):
        self._owner = owner
        self.callback = callback
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if self._active:
            self._active = False
            self._owner._observations.discard(self)


class ValueSubscription(Generic[T]):
    """
    Async iterator over an ObservableValue: yields the value current at
    subscription time, then every subsequent change, in order.

    Use as an async context manager so the underlying stream is released:

        async with observable.subscribe() as updates:
            async for value in updates:
                ...
    """

    def __init__(self, owner: "ObservableValue[T]"):
        self._owner = owner
        send, receive = anyio.create_memory_object_stream(max_buffer_size=math.inf)
        self._send: MemoryObjectSendStream[T] = send
        self._receive: MemoryObjectReceiveStream[T] = receive
        self._send.send_nowait(owner.value)
        if owner.closed:
            self._send.close()
        else:
            owner._streams.add(self._send)

    async def __aenter__(self) -> "ValueSubscription[T]":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        self._owner._streams.discard(self._send)
        self._send.close()
        self._receive.close()

    def __aiter__(self) -> "ValueSubscription[T]":
        return self

    async def __anext__(self) -> T:
        try:
            return await self._receive.receive()
        except (anyio.EndOfStream, anyio.ClosedResourceError):
            raise StopAsyncIteration


class ObservableValue(Generic[T]):
    """
    A value that pushes each change to its observers.

    Observers registered with `observe` are called synchronously with the
    current value and again on every change. Subscribers created with
    `subscribe` receive the same sequence through a private buffered stream,
    so every concurrent subscriber sees identical updates in identical order.
    """

    def __init__(self, initial: T, *, name: Optional[str] = None):
        self.name = name or "value"
        self._value = initial
        self._closed = False
        self._observations: set[Observation] = set()
        self._streams: set[MemoryObjectSendStream[T]] = set()

    @property
    def value(self) -> T:
        return self._value

    @property
    def closed(self) -> bool:
        return self._closed

    def set(self, value: T) -> bool:
        """
        Update the value and notify observers.

        Returns:
            True if the value changed, False if it was equal to the current one.
        """
        if value == self._value:
            return False
        self._value = value

        for send_stream in list(self._streams):
            try:
                send_stream.send_nowait(value)
            except (anyio.BrokenResourceError, anyio.ClosedResourceError):
                self._streams.discard(send_stream)

        for observation in list(self._observations):
            self._notify(observation, value)
        return True

    def observe(self, callback: Callable[[T], Any]) -> Observation:
        """Register a callback; it is invoked immediately with the current value."""
        observation = Observation(self, callback)
        self._observations.add(observation)
        self._notify(observation, self._value)
        return observation

    def subscribe(self) -> ValueSubscription[T]:
        return ValueSubscription(self)

    async def wait_for(self, predicate: Callable[[T], bool]) -> T:
        """
        Wait until the value satisfies `predicate` and return that value.

        The current value is checked first, then each change in order.

        Raises:
            RuntimeError: If the value is closed before the predicate holds.
        """
        async with self.subscribe() as updates:
            async for value in updates:
                if predicate(value):
                    return value
        raise RuntimeError(
            f"Observable '{self.name}' closed before the awaited value was observed"
        )

    def close(self) -> None:
        """End all subscriptions after they drain; callbacks stay registered."""
        if self._closed:
            return
        self._closed = True
        for send_stream in list(self._streams):
            send_stream.close()
        self._streams.clear()

    def _notify(self, observation: Observation, value: T) -> None:
        try:
            observation.callback(value)
        except Exception:
            logger.exception(f"Observer of '{self.name}' raised while handling {value!r}")
