# Copyright (c) 2023 - 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Transport implementation backed by httpx.

Each attempt runs as an asyncio task that streams its body chunk by chunk.
Suspension closes a gate checked between chunks; cancellation cancels the
task. Any exception raised by an attempt, including request construction
errors such as httpx.InvalidURL, is reported to the completion handler as
TransportError and never propagates.
"""

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import anyio
import httpx
import orjson
from pydantic import BaseModel, ValidationError

from asyncrequest.errors import (
    InvalidResumeDataError,
    TransportCancelledError,
    TransportError,
)
from asyncrequest.network.envelope import ResponseMetadata
from asyncrequest.network.primitives import RequestDescription, TransportConfig
from asyncrequest.network.transport import (
    CompletionHandler,
    Transport,
    TransportTask,
)

logger = logging.getLogger(__name__)

__all__ = [
    "DownloadResumeState",
    "HttpxTransport",
]


def _metadata_from(response: httpx.Response) -> ResponseMetadata:
    return ResponseMetadata(
        status_code=response.status_code,
        headers=dict(response.headers),
        url=str(response.url),
    )


def _content_length(response: httpx.Response) -> Optional[int]:
    value = response.headers.get("Content-Length")
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


class DownloadResumeState(BaseModel):
    """
    Progress of a download, serialized as opaque resume data.

    `received` is the number of bytes of the body already in `path`.
    """

    url: str
    method: str = "GET"
    headers: dict[str, str] = {}
    timeout: Optional[float] = None
    path: Path
    received: int = 0
    total: Optional[int] = None
    etag: Optional[str] = None
    resumable: bool = False

    def to_resume_data(self) -> bytes:
        return orjson.dumps(self.model_dump(mode="json"))

    @classmethod
    def from_resume_data(cls, resume_data: bytes) -> "DownloadResumeState":
        """
        Raises:
            InvalidResumeDataError: If the data is not a serialized state.
        """
        try:
            return cls.model_validate(orjson.loads(resume_data))
        except (orjson.JSONDecodeError, ValidationError, TypeError) as e:
            raise InvalidResumeDataError(f"Resume data could not be decoded: {e}") from e


class _HttpxTask(TransportTask):
    """Attempt executed by an HttpxTransport."""

    def __init__(
        self,
        completion: CompletionHandler,
        runner: Callable[["_HttpxTask"], Awaitable[Any]],
        name: str,
    ):
        super().__init__(completion)
        self._runner = runner
        self._name = name
        self._gate = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._cancelled = False
        self._succeeded = False
        self.metadata: Optional[ResponseMetadata] = None

    def resume(self) -> None:
        if self._cancelled or self.completed:
            return
        self._gate.set()
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(
                self._run(), name=self._name
            )

    def suspend(self) -> None:
        self._gate.clear()

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._task is None:
            self._complete(None, None, TransportCancelledError())
        elif not self._task.done():
            self._task.cancel()

    async def checkpoint(self) -> None:
        """Block while the task is suspended."""
        if not self._gate.is_set():
            await self._gate.wait()

    async def wait_finished(self) -> None:
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    async def _run(self) -> None:
        try:
            await self.checkpoint()
            payload = await self._runner(self)
        except asyncio.CancelledError:
            self._complete(None, self.metadata, TransportCancelledError())
            raise
        except (httpx.HTTPError, OSError) as e:
            logger.debug(f"{self._name} failed: {type(e).__name__}: {e}")
            self._fail(e)
            return
        except Exception as e:
            # e.g. httpx.InvalidURL, raised while the request is being built.
            logger.warning(f"{self._name} failed: {type(e).__name__}: {e}")
            self._fail(e)
            return
        self._succeeded = True
        self._set_progress(1.0)
        self._complete(payload, self.metadata, None)

    def _fail(self, e: Exception) -> None:
        self._complete(
            None,
            self.metadata,
            TransportError(
                str(e) or type(e).__name__,
                original_exception=e,
                status_code=self.metadata.status_code if self.metadata else None,
            ),
        )


class _HttpxDownloadTask(_HttpxTask):
    def __init__(
        self,
        completion: CompletionHandler,
        runner: Callable[["_HttpxTask"], Awaitable[Any]],
        name: str,
        state: DownloadResumeState,
        owns_file: bool,
    ):
        super().__init__(completion, runner, name)
        self.state = state
        self._owns_file = owns_file
        self.scratch_paths: list[Path] = []

    async def cancel_producing_resume_data(self) -> Optional[bytes]:
        self.cancel()
        await self.wait_finished()
        if self._succeeded or not self.state.resumable or self.state.received <= 0:
            return None
        return self.state.to_resume_data()

    def release(self) -> None:
        super().release()
        if self._owns_file:
            self.state.path.unlink(missing_ok=True)
        for path in self.scratch_paths:
            path.unlink(missing_ok=True)
        self.scratch_paths.clear()


class HttpxTransport(Transport):
    """
    Transport over a shared httpx.AsyncClient.

    Args:
        config: Transport configuration; defaults to TransportConfig().
        client: Optional client to use. A client passed in is not closed by
            `aclose()`; one created by the transport is.
    """

    def __init__(
        self,
        config: Optional[TransportConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or TransportConfig()
        self._client = client
        self._owns_client = client is None
        self._closed = False

    async def _get_client(self) -> httpx.AsyncClient:
        """
        Get or create the httpx client.

        Returns:
            An httpx.AsyncClient instance.
        """
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=self.config.timeout,
                headers=self.config.default_headers,
                follow_redirects=self.config.follow_redirects,
            )
            self._owns_client = True
            self._closed = False
        return self._client

    async def aclose(self) -> None:
        """Close the httpx client if this transport created it."""
        if self._closed:
            return
        self._closed = True
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HttpxTransport":
        await self._get_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    # Task factories

    def data_task(
        self, request: RequestDescription, completion: CompletionHandler
    ) -> TransportTask:
        async def runner(task: _HttpxTask) -> bytes:
            return await self._send(task, request, content=request.body)

        return _HttpxTask(completion, runner, name=f"data {request.url}")

    def upload_task(
        self,
        request: RequestDescription,
        completion: CompletionHandler,
        *,
        data: Optional[bytes] = None,
        file: Optional[Path] = None,
    ) -> TransportTask:
        if (data is None) == (file is None):
            raise ValueError("Exactly one of data or file must be provided")

        async def runner(task: _HttpxTask) -> bytes:
            if file is not None:
                size = (await anyio.Path(file).stat()).st_size
                content = self._file_chunks(task, Path(file), size)
            else:
                size = len(data)
                content = self._bytes_chunks(task, data)
            return await self._send(
                task,
                request,
                content=content,
                extra_headers={"Content-Length": str(size)},
                track_download=False,
            )

        return _HttpxTask(completion, runner, name=f"upload {request.url}")

    def download_task(
        self, request: RequestDescription, completion: CompletionHandler
    ) -> TransportTask:
        state = DownloadResumeState(
            url=request.url,
            method=request.method.value,
            headers=request.effective_headers(),
            timeout=request.timeout,
            path=self._new_download_path(),
        )
        return _HttpxDownloadTask(
            completion,
            lambda task: self._download(task, state),
            name=f"download {request.url}",
            state=state,
            owns_file=True,
        )

    def download_task_with_resume_data(
        self, resume_data: bytes, completion: CompletionHandler
    ) -> TransportTask:
        state = DownloadResumeState.from_resume_data(resume_data)
        return _HttpxDownloadTask(
            completion,
            lambda task: self._download(task, state),
            name=f"resume download {state.url}",
            state=state,
            owns_file=False,
        )

    def validate_resume_data(self, resume_data: bytes) -> None:
        DownloadResumeState.from_resume_data(resume_data)

    # Runners

    @staticmethod
    def _request_kwargs(
        headers: dict[str, str], timeout: Optional[float]
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"headers": headers}
        if timeout is not None:
            kwargs["timeout"] = timeout
        return kwargs

    async def _send(
        self,
        task: _HttpxTask,
        request: RequestDescription,
        content: Any = None,
        extra_headers: Optional[dict[str, str]] = None,
        track_download: bool = True,
    ) -> bytes:
        client = await self._get_client()
        headers = request.effective_headers()
        headers.update(extra_headers or {})
        async with client.stream(
            request.method.value,
            request.url,
            content=content,
            **self._request_kwargs(headers, request.timeout),
        ) as response:
            task.metadata = _metadata_from(response)
            total = _content_length(response)
            buffer = bytearray()
            async for chunk in response.aiter_bytes(self.config.chunk_size):
                await task.checkpoint()
                buffer.extend(chunk)
                if track_download and total:
                    task._set_progress(response.num_bytes_downloaded / total)
            return bytes(buffer)

    async def _bytes_chunks(self, task: _HttpxTask, data: bytes) -> AsyncIterator[bytes]:
        total = len(data)
        chunk_size = self.config.chunk_size
        for start in range(0, total, chunk_size):
            await task.checkpoint()
            piece = data[start : start + chunk_size]
            yield piece
            task._set_progress((start + len(piece)) / total)

    async def _file_chunks(
        self, task: _HttpxTask, path: Path, total: int
    ) -> AsyncIterator[bytes]:
        sent = 0
        async with await anyio.open_file(path, "rb") as f:
            while True:
                await task.checkpoint()
                piece = await f.read(self.config.chunk_size)
                if not piece:
                    break
                yield piece
                sent += len(piece)
                if total:
                    task._set_progress(sent / total)

    def _new_download_path(self) -> Path:
        directory = self.config.download_dir
        if directory is not None:
            directory.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(
            prefix="asyncrequest-", suffix=".download", dir=directory
        )
        os.close(fd)
        return Path(name)

    async def _prepare_partial_file(self, state: DownloadResumeState) -> None:
        path = anyio.Path(state.path)
        if not await path.exists():
            state.received = 0
            return
        size = (await path.stat()).st_size
        state.received = min(state.received, size)
        async with await anyio.open_file(state.path, "r+b") as f:
            await f.truncate(state.received)

    async def _download(
        self, task: _HttpxDownloadTask, state: DownloadResumeState
    ) -> Path:
        client = await self._get_client()
        headers = dict(state.headers)
        # Range offsets must refer to the bytes written to disk.
        headers.setdefault("Accept-Encoding", "identity")

        if state.received > 0:
            await self._prepare_partial_file(state)
        resuming = state.received > 0
        if resuming:
            headers["Range"] = f"bytes={state.received}-"
            if state.etag:
                headers["If-Range"] = state.etag

        async with client.stream(
            state.method, state.url, **self._request_kwargs(headers, state.timeout)
        ) as response:
            task.metadata = _metadata_from(response)
            if resuming and response.status_code == 206:
                mode = "ab"
            elif resuming and response.status_code != 200:
                # Error bodies never touch the partial file or its offset.
                return await self._download_aside(task, response)
            else:
                mode = "wb"
                state.received = 0

            length = _content_length(response)
            state.total = state.received + length if length is not None else None
            state.etag = response.headers.get("ETag", state.etag)
            state.resumable = (
                response.status_code == 206
                or response.headers.get("Accept-Ranges", "").lower() == "bytes"
            )
            if state.total:
                task._set_progress(state.received / state.total)

            async with await anyio.open_file(state.path, mode) as f:
                async for chunk in response.aiter_bytes(self.config.chunk_size):
                    await task.checkpoint()
                    await f.write(chunk)
                    state.received += len(chunk)
                    if state.total:
                        task._set_progress(state.received / state.total)

        logger.debug(f"Downloaded {state.received} bytes to {state.path}")
        return state.path

    async def _download_aside(
        self, task: _HttpxDownloadTask, response: httpx.Response
    ) -> Path:
        """Store the body of a refused resume in a scratch file owned by the task."""
        path = self._new_download_path()
        task.scratch_paths.append(path)
        total = _content_length(response)
        written = 0
        async with await anyio.open_file(path, "wb") as f:
            async for chunk in response.aiter_bytes(self.config.chunk_size):
                await task.checkpoint()
                await f.write(chunk)
                written += len(chunk)
                if total:
                    task._set_progress(written / total)
        logger.debug(
            f"Resume of {task.state.path} answered with {response.status_code}; "
            f"kept {written} bytes aside in {path}"
        )
        return path
