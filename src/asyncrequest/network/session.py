# Copyright (c) 2023 - 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Entry points that build AsyncRequest controllers.

Each call constructs its own default classifier and retry policy when none is
given, so requests never share hidden chain state.
"""

import logging
from pathlib import Path
from typing import Optional, Union

from asyncrequest.network.adapter import AttemptAdapter, OperationKind
from asyncrequest.network.classifier import OutcomeClassifier
from asyncrequest.network.client import HttpxTransport
from asyncrequest.network.primitives import RequestDescription, TransportConfig
from asyncrequest.network.request import AsyncRequest
from asyncrequest.network.retry import RetryPolicy
from asyncrequest.network.transport import Transport

logger = logging.getLogger(__name__)

__all__ = ["RequestSession"]


class RequestSession:
    """
    Creates requests against one transport.

    Example:
        async with RequestSession() as session:
            request = session.data_task(
                RequestDescription.get("https://api.example.com/items"),
                retry_policy=RetryPolicy().retry_if_rejected(max=2),
                classifier=OutcomeClassifier().allowed_status_codes(range(200, 300)),
            )
            envelope = await request.response()
    """

    def __init__(
        self,
        transport: Optional[Transport] = None,
        config: Optional[TransportConfig] = None,
    ):
        if transport is not None and config is not None:
            raise ValueError("Pass either a transport or a config, not both")
        self.transport = transport or HttpxTransport(config)
        self._owns_transport = transport is None

    @classmethod
    def from_env(cls, prefix: str = "ASYNCREQUEST_") -> "RequestSession":
        return cls(config=TransportConfig.from_env(prefix))

    async def aclose(self) -> None:
        if self._owns_transport:
            await self.transport.aclose()

    async def __aenter__(self) -> "RequestSession":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    def _create(
        self,
        adapter: AttemptAdapter,
        retry_policy: Optional[RetryPolicy],
        classifier: Optional[OutcomeClassifier],
        request_id: Optional[str],
    ) -> AsyncRequest:
        request = AsyncRequest(
            adapter,
            classifier if classifier is not None else OutcomeClassifier(),
            retry_policy if retry_policy is not None else RetryPolicy(),
            request_id=request_id,
        )
        logger.debug(f"Created {adapter.kind.value} request {request.request_id}")
        return request

    def data_task(
        self,
        request: RequestDescription,
        retry_policy: Optional[RetryPolicy] = None,
        classifier: Optional[OutcomeClassifier] = None,
        *,
        request_id: Optional[str] = None,
    ) -> AsyncRequest:
        """Request whose payload is the response body as bytes."""
        adapter = AttemptAdapter(self.transport, OperationKind.DATA, request=request)
        return self._create(adapter, retry_policy, classifier, request_id)

    def upload_task(
        self,
        request: RequestDescription,
        *,
        data: Optional[bytes] = None,
        file: Optional[Union[str, Path]] = None,
        retry_policy: Optional[RetryPolicy] = None,
        classifier: Optional[OutcomeClassifier] = None,
        request_id: Optional[str] = None,
    ) -> AsyncRequest:
        """Request that uploads `data` or the content of `file`."""
        if (data is None) == (file is None):
            raise ValueError("Exactly one of data or file must be provided")
        if data is not None:
            adapter = AttemptAdapter(
                self.transport,
                OperationKind.UPLOAD_DATA,
                request=request,
                upload_data=data,
            )
        else:
            adapter = AttemptAdapter(
                self.transport,
                OperationKind.UPLOAD_FILE,
                request=request,
                upload_file=Path(file),
            )
        return self._create(adapter, retry_policy, classifier, request_id)

    def download_task(
        self,
        request: RequestDescription,
        retry_policy: Optional[RetryPolicy] = None,
        classifier: Optional[OutcomeClassifier] = None,
        *,
        request_id: Optional[str] = None,
    ) -> AsyncRequest:
        """Request whose payload is the Path of the downloaded file."""
        adapter = AttemptAdapter(
            self.transport, OperationKind.DOWNLOAD, request=request
        )
        return self._create(adapter, retry_policy, classifier, request_id)

    def resume_download(
        self,
        resume_data: bytes,
        retry_policy: Optional[RetryPolicy] = None,
        classifier: Optional[OutcomeClassifier] = None,
        *,
        request_id: Optional[str] = None,
    ) -> AsyncRequest:
        """
        Continue a download from data returned by
        `AsyncRequest.cancel_producing_resume_data()`.

        Raises:
            InvalidResumeDataError: If the transport cannot use the data.
        """
        self.transport.validate_resume_data(resume_data)
        adapter = AttemptAdapter(
            self.transport, OperationKind.RESUME_DOWNLOAD, resume_data=resume_data
        )
        return self._create(adapter, retry_policy, classifier, request_id)
