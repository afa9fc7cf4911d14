# Copyright (c) 2023 - 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Request and transport configuration primitives.

RequestDescription is the immutable description an attempt is issued from;
every fluent helper returns a modified copy. TransportConfig configures the
httpx transport.
"""

import os
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import httpx
import orjson
from pydantic import BaseModel, ConfigDict, Field, field_validator

from asyncrequest.errors import FormEncodeError, JSONEncodeError, StringEncodeError
from asyncrequest.utils import get_env_bool, get_env_dict, get_env_float, get_env_int

__all__ = [
    "HTTPMethod",
    "HTTPContentType",
    "CachePolicy",
    "RequestDescription",
    "TransportConfig",
]


class HTTPMethod(str, Enum):
    GET = "GET"
    HEAD = "HEAD"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    CONNECT = "CONNECT"
    OPTIONS = "OPTIONS"
    TRACE = "TRACE"
    PATCH = "PATCH"


class HTTPContentType(str, Enum):
    """Common media types for the Content-Type header."""

    TEXT_PLAIN = "text/plain"
    TEXT_HTML = "text/html"
    TEXT_CSS = "text/css"
    TEXT_CSV = "text/csv"
    TEXT_XML = "text/xml"
    APPLICATION_JSON = "application/json"
    APPLICATION_LD_JSON = "application/ld+json"
    APPLICATION_XML = "application/xml"
    APPLICATION_JAVASCRIPT = "application/javascript"
    APPLICATION_OCTET_STREAM = "application/octet-stream"
    APPLICATION_PDF = "application/pdf"
    APPLICATION_ZIP = "application/zip"
    APPLICATION_FORM_URLENCODED = "application/x-www-form-urlencoded"
    MULTIPART_FORM_DATA = "multipart/form-data"
    MULTIPART_MIXED = "multipart/mixed"
    IMAGE_PNG = "image/png"
    IMAGE_JPEG = "image/jpeg"
    IMAGE_GIF = "image/gif"
    IMAGE_SVG = "image/svg+xml"
    AUDIO_MPEG = "audio/mpeg"
    VIDEO_MP4 = "video/mp4"


FormFields = Mapping[str, Any]
# bytes, a Path read at build time, or an httpx (filename, content[, type]) tuple
FileValue = Union[bytes, Path, tuple]


def _form_values(value: Any) -> list[Union[str, bytes]]:
    values = value if isinstance(value, (list, tuple)) else [value]
    return [v if isinstance(v, (str, bytes)) else str(v) for v in values]


def _file_part(value: FileValue) -> Any:
    if isinstance(value, Path):
        return (value.name, value.read_bytes())
    if isinstance(value, (bytes, bytearray)):
        return ("upload", bytes(value))
    return value


def _encode_body(**kwargs: Any) -> httpx.Request:
    # httpx encodes form bodies only while building a request; the URL is unused.
    try:
        request = httpx.Request("POST", "http://localhost", **kwargs)
        request.read()
    except (TypeError, ValueError) as e:
        raise FormEncodeError(e) from e
    return request


class CachePolicy(str, Enum):
    """Cache behaviour requested for an attempt; mapped to request headers."""

    USE_PROTOCOL_CACHE_POLICY = "use_protocol_cache_policy"
    RELOAD_IGNORING_CACHE = "reload_ignoring_cache"
    RETURN_CACHE_DATA_ELSE_LOAD = "return_cache_data_else_load"
    RETURN_CACHE_DATA_DONT_LOAD = "return_cache_data_dont_load"

    def as_headers(self) -> dict[str, str]:
        if self is CachePolicy.RELOAD_IGNORING_CACHE:
            return {"Cache-Control": "no-cache", "Pragma": "no-cache"}
        if self is CachePolicy.RETURN_CACHE_DATA_ELSE_LOAD:
            return {"Cache-Control": "max-stale"}
        if self is CachePolicy.RETURN_CACHE_DATA_DONT_LOAD:
            return {"Cache-Control": "only-if-cached"}
        return {}


class RequestDescription(BaseModel):
    """
    Immutable description of a request, consumed verbatim by every attempt.

    Example:
        request = (
            RequestDescription.post("https://api.example.com/items")
            .with_header("X-Trace", "abc")
            .with_json_body({"name": "widget"})
            .with_timeout(10.0)
        )
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: str = Field(min_length=1)
    method: HTTPMethod = HTTPMethod.GET
    headers: dict[str, str] = Field(default_factory=dict)
    body: Optional[bytes] = None
    timeout: Optional[float] = Field(default=None, gt=0)
    cache_policy: CachePolicy = CachePolicy.USE_PROTOCOL_CACHE_POLICY

    @classmethod
    def get(cls, url: str) -> "RequestDescription":
        return cls(url=url, method=HTTPMethod.GET)

    @classmethod
    def post(cls, url: str) -> "RequestDescription":
        return cls(url=url, method=HTTPMethod.POST)

    @classmethod
    def put(cls, url: str) -> "RequestDescription":
        return cls(url=url, method=HTTPMethod.PUT)

    @classmethod
    def patch(cls, url: str) -> "RequestDescription":
        return cls(url=url, method=HTTPMethod.PATCH)

    @classmethod
    def delete(cls, url: str) -> "RequestDescription":
        return cls(url=url, method=HTTPMethod.DELETE)

    def with_method(self, method: HTTPMethod | str) -> "RequestDescription":
        return self.model_copy(update={"method": HTTPMethod(method.upper())})

    def with_header(self, field: str, value: str) -> "RequestDescription":
        """Add a header; an existing value for the field is joined with a comma."""
        headers = dict(self.headers)
        existing = next((k for k in headers if k.lower() == field.lower()), None)
        if existing is None:
            headers[field] = value
        else:
            headers[existing] = f"{headers[existing]},{value}"
        return self.model_copy(update={"headers": headers})

    def with_headers(self, headers: dict[str, str]) -> "RequestDescription":
        request = self
        for field, value in headers.items():
            request = request.with_header(field, value)
        return request

    def with_content_type(
        self, content_type: HTTPContentType | str
    ) -> "RequestDescription":
        if isinstance(content_type, HTTPContentType):
            content_type = content_type.value
        headers = {k: v for k, v in self.headers.items() if k.lower() != "content-type"}
        headers["Content-Type"] = content_type
        return self.model_copy(update={"headers": headers})

    def with_timeout(self, timeout: float) -> "RequestDescription":
        return self.model_validate({**self.model_dump(), "timeout": timeout})

    def with_cache_policy(self, policy: CachePolicy) -> "RequestDescription":
        return self.model_copy(update={"cache_policy": policy})

    def with_body(self, body: bytes) -> "RequestDescription":
        return self.model_copy(update={"body": bytes(body)})

    def with_text_body(
        self, text: str, encoding: str = "utf-8"
    ) -> "RequestDescription":
        """
        Set a plain-text body.

        Raises:
            StringEncodeError: If the text cannot be encoded with `encoding`.
        """
        try:
            data = text.encode(encoding)
        except (UnicodeEncodeError, LookupError) as e:
            raise StringEncodeError(text, encoding) from e
        return self.with_content_type(
            f"{HTTPContentType.TEXT_PLAIN.value}; charset={encoding}"
        ).with_body(data)

    def with_json_body(self, value: Any) -> "RequestDescription":
        """
        Set a JSON body serialized with orjson.

        Raises:
            JSONEncodeError: If the value is not JSON serializable.
        """
        if isinstance(value, BaseModel):
            value = value.model_dump(mode="json")
        try:
            data = orjson.dumps(value)
        except TypeError as e:
            raise JSONEncodeError(value, e) from e
        return self.with_content_type(HTTPContentType.APPLICATION_JSON).with_body(data)

    def with_form_body(self, fields: FormFields) -> "RequestDescription":
        """
        Set an application/x-www-form-urlencoded body.

        List or tuple values repeat the field. Values are converted to text
        the way httpx does it (True becomes "true", None becomes "").

        Raises:
            FormEncodeError: If httpx cannot encode the fields.
        """
        encoded = _encode_body(data=dict(fields))
        return self.with_content_type(
            HTTPContentType.APPLICATION_FORM_URLENCODED
        ).with_body(encoded.content)

    def with_multipart_body(
        self,
        fields: Optional[FormFields] = None,
        files: Optional[Mapping[str, FileValue]] = None,
        boundary: Optional[str] = None,
    ) -> "RequestDescription":
        """
        Set a multipart/form-data body encoded by httpx.

        Args:
            fields: Plain form fields, sent as parts without a filename.
            files: File parts. A bytes value is sent as "upload", a Path is
                read now and sent under its name, and a tuple is passed to
                httpx as (filename, content[, content_type]).
            boundary: Part boundary; httpx generates one when omitted.

        Raises:
            ValueError: If neither fields nor files are given.
            FormEncodeError: If httpx cannot encode a part.
        """
        parts = [
            (name, (None, value))
            for name, raw in (fields or {}).items()
            for value in _form_values(raw)
        ]
        parts.extend((name, _file_part(value)) for name, value in (files or {}).items())
        if not parts:
            raise ValueError("A multipart body needs at least one field or file")

        headers = {}
        if boundary is not None:
            headers["Content-Type"] = (
                f"{HTTPContentType.MULTIPART_FORM_DATA.value}; boundary={boundary}"
            )
        encoded = _encode_body(files=parts, headers=headers)
        return self.with_content_type(encoded.headers["Content-Type"]).with_body(
            encoded.content
        )

    def effective_headers(self) -> dict[str, str]:
        """Headers to send, including those derived from the cache policy."""
        headers = dict(self.cache_policy.as_headers())
        headers.update(self.headers)
        return headers


class TransportConfig(BaseModel):
    """Configuration for the httpx-backed transport."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    base_url: str = ""
    timeout: float = Field(default=60.0, gt=0)
    chunk_size: int = Field(default=64 * 1024, ge=1024)
    download_dir: Optional[Path] = None
    follow_redirects: bool = True
    default_headers: dict[str, str] = Field(default_factory=dict)

    @field_validator("default_headers", mode="before")
    @classmethod
    def validate_header_values(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {str(key): str(value) for key, value in v.items()}
        return v

    @classmethod
    def from_env(cls, prefix: str = "ASYNCREQUEST_") -> "TransportConfig":
        """
        Build a config from environment variables, falling back to defaults.

        Recognized variables (with the default prefix): ASYNCREQUEST_BASE_URL,
        ASYNCREQUEST_TIMEOUT, ASYNCREQUEST_CHUNK_SIZE, ASYNCREQUEST_DOWNLOAD_DIR,
        ASYNCREQUEST_FOLLOW_REDIRECTS, ASYNCREQUEST_DEFAULT_HEADERS (JSON object).
        """
        defaults = cls()
        raw_dir = os.environ.get(f"{prefix}DOWNLOAD_DIR", "").strip()
        return cls(
            base_url=os.environ.get(f"{prefix}BASE_URL", defaults.base_url),
            timeout=get_env_float(f"{prefix}TIMEOUT", defaults.timeout),
            chunk_size=get_env_int(f"{prefix}CHUNK_SIZE", defaults.chunk_size),
            download_dir=Path(raw_dir) if raw_dir else None,
            follow_redirects=get_env_bool(
                f"{prefix}FOLLOW_REDIRECTS", defaults.follow_redirects
            ),
            default_headers=get_env_dict(f"{prefix}DEFAULT_HEADERS", {}) or {},
        )
