# Copyright (c) 2023 - 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Tests for the attempt adapter.
"""

import asyncio
import threading
from pathlib import Path

import pytest

from asyncrequest.errors import TransportCancelledError
from asyncrequest.network.adapter import AttemptAdapter, OperationKind
from asyncrequest.network.primitives import RequestDescription

DESCRIPTION = RequestDescription.post("https://example.com/upload")


class Recorder:
    def __init__(self):
        self.envelopes = []
        self.progress = []
        self.received = asyncio.Event()

    def on_envelope(self, attempt, envelope):
        self.envelopes.append((attempt, envelope))
        self.received.set()

    def on_progress(self, fraction):
        self.progress.append(fraction)


class TestOperationKind:
    @pytest.mark.parametrize(
        "kind, expected",
        [
            (OperationKind.DATA, False),
            (OperationKind.UPLOAD_DATA, False),
            (OperationKind.UPLOAD_FILE, False),
            (OperationKind.DOWNLOAD, True),
            (OperationKind.RESUME_DOWNLOAD, True),
        ],
    )
    def test_supports_resume_data(self, kind, expected):
        assert kind.supports_resume_data is expected


class TestValidation:
    def test_request_required(self, transport):
        with pytest.raises(ValueError, match="request is required"):
            AttemptAdapter(transport, OperationKind.DATA)

    def test_resume_data_required(self, transport):
        with pytest.raises(ValueError, match="resume_data"):
            AttemptAdapter(transport, OperationKind.RESUME_DOWNLOAD)

    def test_upload_data_required(self, transport):
        with pytest.raises(ValueError, match="upload_data"):
            AttemptAdapter(transport, OperationKind.UPLOAD_DATA, request=DESCRIPTION)

    def test_upload_file_required(self, transport):
        with pytest.raises(ValueError, match="upload_file"):
            AttemptAdapter(transport, OperationKind.UPLOAD_FILE, request=DESCRIPTION)

    def test_upload_file_coerced_to_path(self, transport):
        adapter = AttemptAdapter(
            transport,
            OperationKind.UPLOAD_FILE,
            request=DESCRIPTION,
            upload_file="/tmp/data.bin",
        )
        assert adapter.upload_file == Path("/tmp/data.bin")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kind, params, expected",
    [
        (OperationKind.DATA, {"request": DESCRIPTION}, {"request": DESCRIPTION}),
        (
            OperationKind.UPLOAD_DATA,
            {"request": DESCRIPTION, "upload_data": b"abc"},
            {"request": DESCRIPTION, "data": b"abc", "file": None},
        ),
        (
            OperationKind.UPLOAD_FILE,
            {"request": DESCRIPTION, "upload_file": Path("/tmp/a")},
            {"request": DESCRIPTION, "data": None, "file": Path("/tmp/a")},
        ),
        (OperationKind.DOWNLOAD, {"request": DESCRIPTION}, {"request": DESCRIPTION}),
        (
            OperationKind.RESUME_DOWNLOAD,
            {"resume_data": b"token"},
            {"resume_data": b"token"},
        ),
    ],
)
async def test_start_issues_matching_transport_task(transport, kind, params, expected):
    adapter = AttemptAdapter(transport, kind, **params)
    recorder = Recorder()

    attempt = adapter.start(recorder.on_envelope, recorder.on_progress)

    assert attempt == 1
    assert adapter.attempt == 1
    assert adapter.task is transport.current
    assert transport.current.params == expected
    assert transport.current.started


@pytest.mark.asyncio
async def test_completion_is_delivered_on_the_loop(transport):
    adapter = AttemptAdapter(transport, OperationKind.DATA, request=DESCRIPTION)
    recorder = Recorder()
    adapter.start(recorder.on_envelope, recorder.on_progress)

    transport.current.finish(payload=b"body", status=201)
    assert recorder.envelopes == []

    await asyncio.wait_for(recorder.received.wait(), 1)
    attempt, envelope = recorder.envelopes[0]
    assert attempt == 1
    assert envelope.payload == b"body"
    assert envelope.http_status_code == 201


@pytest.mark.asyncio
async def test_completion_from_another_thread(transport):
    adapter = AttemptAdapter(transport, OperationKind.DATA, request=DESCRIPTION)
    recorder = Recorder()
    adapter.start(recorder.on_envelope, recorder.on_progress)
    task = transport.current

    thread = threading.Thread(target=lambda: task.finish(payload=b"threaded"))
    thread.start()
    thread.join()

    await asyncio.wait_for(recorder.received.wait(), 1)
    assert recorder.envelopes[0][1].payload == b"threaded"


@pytest.mark.asyncio
async def test_new_attempt_invalidates_previous_progress(transport):
    adapter = AttemptAdapter(transport, OperationKind.DATA, request=DESCRIPTION)
    recorder = Recorder()
    adapter.start(recorder.on_envelope, recorder.on_progress)
    first = transport.current
    first.report_progress(0.4)

    second_attempt = adapter.start(recorder.on_envelope, recorder.on_progress)
    first.report_progress(0.8)
    transport.current.report_progress(0.1)

    assert second_attempt == 2
    assert recorder.progress == [0.0, 0.4, 0.0, 0.1]


@pytest.mark.asyncio
async def test_controls_are_forwarded(transport):
    adapter = AttemptAdapter(transport, OperationKind.DATA, request=DESCRIPTION)
    recorder = Recorder()
    adapter.start(recorder.on_envelope, recorder.on_progress)
    task = transport.current

    adapter.suspend()
    assert task.suspended
    adapter.resume()
    assert not task.suspended
    adapter.cancel()
    assert task.cancelled

    await asyncio.wait_for(recorder.received.wait(), 1)
    assert isinstance(recorder.envelopes[0][1].error, TransportCancelledError)


def test_controls_before_start_are_noops(transport):
    adapter = AttemptAdapter(transport, OperationKind.DATA, request=DESCRIPTION)

    adapter.suspend()
    adapter.resume()
    adapter.cancel()
    adapter.discard()

    assert transport.tasks == []


@pytest.mark.asyncio
async def test_cancel_producing_resume_data(transport):
    download = AttemptAdapter(transport, OperationKind.DOWNLOAD, request=DESCRIPTION)
    data = AttemptAdapter(transport, OperationKind.DATA, request=DESCRIPTION)
    recorder = Recorder()

    assert await download.cancel_producing_resume_data() is None

    download.start(recorder.on_envelope, recorder.on_progress)
    assert await download.cancel_producing_resume_data() == b"resume-token"

    data.start(recorder.on_envelope, recorder.on_progress)
    assert await data.cancel_producing_resume_data() is None
    assert transport.current.cancelled


@pytest.mark.asyncio
async def test_discard_releases_task(transport):
    adapter = AttemptAdapter(transport, OperationKind.DATA, request=DESCRIPTION)
    recorder = Recorder()
    adapter.start(recorder.on_envelope, recorder.on_progress)
    task = transport.current

    adapter.discard()
    task.report_progress(0.5)

    assert task.released
    assert adapter.task is None
    assert recorder.progress == [0.0]


@pytest.mark.asyncio
async def test_close_stops_progress(transport):
    adapter = AttemptAdapter(transport, OperationKind.DATA, request=DESCRIPTION)
    recorder = Recorder()
    adapter.start(recorder.on_envelope, recorder.on_progress)

    adapter.close()
    transport.current.report_progress(0.5)

    assert recorder.progress == [0.0]
    assert adapter.task is transport.current
