# Copyright (c) 2023 - 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Attempt adapter between a request controller and its transport.

The adapter issues attempts of one operation kind, always from the same
parameters, and hands each finished attempt to the controller as a
ResponseEnvelope on the controller's event loop.
"""

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional

from asyncrequest.network.envelope import ResponseEnvelope, ResponseMetadata
from asyncrequest.network.primitives import RequestDescription
from asyncrequest.network.transport import (
    ProgressObservation,
    Transport,
    TransportTask,
)

logger = logging.getLogger(__name__)

__all__ = [
    "OperationKind",
    "AttemptAdapter",
]

EnvelopeHandler = Callable[[int, ResponseEnvelope], None]
ProgressHandler = Callable[[float], None]


class OperationKind(str, Enum):
    DATA = "data"
    UPLOAD_DATA = "upload_data"
    UPLOAD_FILE = "upload_file"
    DOWNLOAD = "download"
    RESUME_DOWNLOAD = "resume_download"

    @property
    def supports_resume_data(self) -> bool:
        return self in (OperationKind.DOWNLOAD, OperationKind.RESUME_DOWNLOAD)


def _call_on_loop(loop: asyncio.AbstractEventLoop, func: Callable[..., Any], *args: Any) -> None:
    try:
        running = asyncio.get_running_loop()
    except RuntimeError:
        running = None
    if running is loop:
        func(*args)
    else:
        loop.call_soon_threadsafe(func, *args)


class AttemptAdapter:
    """
    Issues attempts of a single operation against a Transport.

    Args:
        transport: The transport that executes attempts.
        kind: Operation kind issued by every attempt.
        request: Request description (all kinds except RESUME_DOWNLOAD).
        upload_data: Body for UPLOAD_DATA.
        upload_file: File whose content is the body for UPLOAD_FILE.
        resume_data: Resume data for RESUME_DOWNLOAD.
    """

    def __init__(
        self,
        transport: Transport,
        kind: OperationKind,
        *,
        request: Optional[RequestDescription] = None,
        upload_data: Optional[bytes] = None,
        upload_file: Optional[Path] = None,
        resume_data: Optional[bytes] = None,
    ):
        if kind is OperationKind.RESUME_DOWNLOAD:
            if resume_data is None:
                raise ValueError("resume_data is required to resume a download")
        elif request is None:
            raise ValueError(f"request is required for {kind.value} operations")
        if kind is OperationKind.UPLOAD_DATA and upload_data is None:
            raise ValueError("upload_data is required for upload_data operations")
        if kind is OperationKind.UPLOAD_FILE and upload_file is None:
            raise ValueError("upload_file is required for upload_file operations")

        self.transport = transport
        self.kind = kind
        self.request = request
        self.upload_data = upload_data
        self.upload_file = Path(upload_file) if upload_file is not None else None
        self.resume_data = resume_data

        self._task: Optional[TransportTask] = None
        self._observation: Optional[ProgressObservation] = None
        self._attempt = 0

    @property
    def attempt(self) -> int:
        """Number of the most recently started attempt (0 before the first)."""
        return self._attempt

    @property
    def task(self) -> Optional[TransportTask]:
        return self._task

    @property
    def supports_resume_data(self) -> bool:
        return self.kind.supports_resume_data

    def start(self, on_envelope: EnvelopeHandler, on_progress: ProgressHandler) -> int:
        """
        Start a new attempt.

        Must be called from the event loop the handlers belong to. The
        envelope handler is always scheduled on that loop, never invoked from
        inside the transport's callback; progress is delivered inline when
        the transport reports from the same loop.

        Returns:
            The number of the new attempt.
        """
        loop = asyncio.get_running_loop()

        if self._observation is not None:
            self._observation.invalidate()
            self._observation = None

        self._attempt += 1
        attempt = self._attempt

        def completion(
            payload: Any,
            metadata: Optional[ResponseMetadata],
            error: Optional[BaseException],
        ) -> None:
            envelope = ResponseEnvelope(payload=payload, metadata=metadata, error=error)
            loop.call_soon_threadsafe(on_envelope, attempt, envelope)

        def progress(fraction: float) -> None:
            _call_on_loop(loop, on_progress, fraction)

        task = self._create_task(completion)
        self._task = task
        self._observation = task.observe_progress(progress)
        logger.debug(f"Starting {self.kind.value} attempt {attempt}")
        task.resume()
        return attempt

    def _create_task(self, completion: Any) -> TransportTask:
        if self.kind is OperationKind.DATA:
            return self.transport.data_task(self.request, completion)
        if self.kind is OperationKind.UPLOAD_DATA:
            return self.transport.upload_task(
                self.request, completion, data=self.upload_data
            )
        if self.kind is OperationKind.UPLOAD_FILE:
            return self.transport.upload_task(
                self.request, completion, file=self.upload_file
            )
        if self.kind is OperationKind.DOWNLOAD:
            return self.transport.download_task(self.request, completion)
        return self.transport.download_task_with_resume_data(
            self.resume_data, completion
        )

    def suspend(self) -> None:
        if self._task is not None:
            self._task.suspend()

    def resume(self) -> None:
        if self._task is not None:
            self._task.resume()

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()

    async def cancel_producing_resume_data(self) -> Optional[bytes]:
        """Cancel the active attempt; downloads return resume data when available."""
        if self._task is None:
            return None
        if not self.supports_resume_data:
            self._task.cancel()
            return None
        return await self._task.cancel_producing_resume_data()

    def discard(self) -> None:
        """Drop the finished attempt before a retry."""
        if self._observation is not None:
            self._observation.invalidate()
            self._observation = None
        if self._task is not None:
            self._task.release()
            self._task = None

    def close(self) -> None:
        """Stop observing progress once the request is terminal."""
        if self._observation is not None:
            self._observation.invalidate()
            self._observation = None
