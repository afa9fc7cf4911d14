# Copyright (c) 2023 - 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Scripted in-memory transport shared by the network tests.

Tasks created by ScriptedTransport stay pending until a test finishes them,
unless the transport was given a script of outcomes, in which case each new
task completes with the next outcome as soon as it is started.
"""

import asyncio
from typing import Any, Optional

import pytest

from asyncrequest.errors import TransportCancelledError
from asyncrequest.network.envelope import ResponseMetadata
from asyncrequest.network.transport import Transport, TransportTask


class ScriptedTask(TransportTask):
    def __init__(self, transport, kind, completion, **params):
        super().__init__(completion)
        self.transport = transport
        self.kind = kind
        self.params = params
        self.resume_calls = 0
        self.suspend_calls = 0
        self.started = False
        self.suspended = False
        self.cancelled = False
        self.released = False

    def resume(self):
        self.resume_calls += 1
        self.suspended = False
        if not self.started:
            self.started = True
            outcome = self.transport.next_outcome()
            if outcome is not None:
                asyncio.get_running_loop().call_soon(lambda: self.finish(**outcome))

    def suspend(self):
        self.suspend_calls += 1
        self.suspended = True

    def cancel(self):
        if self.cancelled:
            return
        self.cancelled = True
        self._complete(None, None, TransportCancelledError())

    async def cancel_producing_resume_data(self) -> Optional[bytes]:
        self.cancel()
        return self.transport.resume_data

    def release(self):
        super().release()
        self.released = True

    def report_progress(self, fraction: float):
        self._set_progress(fraction)

    def finish(
        self,
        payload: Any = None,
        status: Optional[int] = 200,
        error: Optional[BaseException] = None,
        headers: Optional[dict[str, str]] = None,
    ):
        metadata = None
        if status is not None:
            metadata = ResponseMetadata(status_code=status, headers=headers or {})
        self._complete(payload, metadata, error)


class ScriptedTransport(Transport):
    def __init__(self, outcomes=None, resume_data: Optional[bytes] = b"resume-token"):
        self.outcomes = list(outcomes or [])
        self.resume_data = resume_data
        self.tasks: list[ScriptedTask] = []

    def next_outcome(self) -> Optional[dict[str, Any]]:
        if self.outcomes:
            return self.outcomes.pop(0)
        return None

    def _task(self, kind, completion, **params):
        task = ScriptedTask(self, kind, completion, **params)
        self.tasks.append(task)
        return task

    def data_task(self, request, completion):
        return self._task("data", completion, request=request)

    def upload_task(self, request, completion, *, data=None, file=None):
        return self._task("upload", completion, request=request, data=data, file=file)

    def download_task(self, request, completion):
        return self._task("download", completion, request=request)

    def download_task_with_resume_data(self, resume_data, completion):
        return self._task("resume_download", completion, resume_data=resume_data)

    @property
    def current(self) -> ScriptedTask:
        return self.tasks[-1]


@pytest.fixture
def transport():
    return ScriptedTransport()


@pytest.fixture
def make_transport():
    """Factory for transports completing tasks with scripted outcomes."""
    return ScriptedTransport
