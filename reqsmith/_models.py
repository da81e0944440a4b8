"""
Value types for one request/response exchange.

Requests are described declaratively and can round-trip through the
externally tagged JSON shape used by API-client front ends::

    {"method": "POST", "url": "https://example.com",
     "auth": {"Bearer": {"token": "..."}},
     "body": {"Raw": {"content": "{}", "content_type": "application/json"}}}

Every type is immutable; the pipeline copies instead of mutating.
"""

from __future__ import annotations

import base64
import enum
import json as _json
import typing
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Union

DEFAULT_TIMEOUT_MS = 30000
DEFAULT_MAX_REDIRECTS = 10


class Method(str, enum.Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"
    TRACE = "TRACE"
    CONNECT = "CONNECT"

    def __str__(self) -> str:
        return self.value


class ApiKeyLocation(str, enum.Enum):
    HEADER = "Header"
    QUERY = "Query"


class HttpProtocol(str, enum.Enum):
    # HTTP/1.1 or HTTP/2 over TCP
    TCP = "Tcp"
    # HTTP/3 over QUIC, accepted as a hint but never negotiated
    QUIC = "Quic"


class ResponseRenderer(str, enum.Enum):
    RAW = "Raw"
    JSON = "Json"
    XML = "Xml"
    HTML = "Html"
    HTML_PREVIEW = "HtmlPreview"
    IMAGE = "Image"
    AUDIO = "Audio"
    VIDEO = "Video"
    PDF = "Pdf"

    def __str__(self) -> str:
        return self.value


# ---------------------------------------------------------------------------
# Auth variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NoAuth:
    pass


@dataclass(frozen=True)
class BasicAuth:
    username: str
    password: str


@dataclass(frozen=True)
class BearerAuth:
    token: str


@dataclass(frozen=True)
class ApiKeyAuth:
    key: str
    value: str
    location: ApiKeyLocation = ApiKeyLocation.HEADER

    def __post_init__(self) -> None:
        object.__setattr__(self, "location", ApiKeyLocation(self.location))


Auth = Union[NoAuth, BasicAuth, BearerAuth, ApiKeyAuth]


# ---------------------------------------------------------------------------
# Body variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MultipartText:
    text: str


@dataclass(frozen=True)
class MultipartFile:
    data: bytes
    filename: str
    content_type: str | None = None


@dataclass(frozen=True)
class MultipartField:
    name: str
    value: MultipartText | MultipartFile


@dataclass(frozen=True)
class NoBody:
    pass


@dataclass(frozen=True)
class RawBody:
    content: str
    content_type: str | None = None


@dataclass(frozen=True)
class FormUrlEncodedBody:
    fields: Mapping[str, str]

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", dict(self.fields))


@dataclass(frozen=True)
class MultipartBody:
    fields: tuple[MultipartField, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", tuple(self.fields))


@dataclass(frozen=True)
class BinaryBody:
    data: bytes
    filename: str | None = None


Body = Union[NoBody, RawBody, FormUrlEncodedBody, MultipartBody, BinaryBody]


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Cookie:
    name: str
    value: str
    domain: str | None = None
    path: str | None = None
    expires: str | None = None
    http_only: bool | None = None
    secure: bool | None = None


@dataclass(frozen=True)
class ProxyConfig:
    url: str
    username: str | None = None
    password: str | None = None

    @property
    def credentials(self) -> tuple[str, str] | None:
        """Proxy basic credentials, only when both halves are present."""
        if self.username is None or self.password is None:
            return None
        return (self.username, self.password)


HeaderTypes = Union[Mapping[str, str], Iterable[typing.Tuple[str, str]]]


@dataclass(frozen=True)
class ApiRequest:
    """One HTTP call, described as data.

    ``timeout_ms``, ``follow_redirects``, ``max_redirects`` and ``verify_ssl``
    take their defaults only when omitted. An explicit ``None`` means
    "not set"; ``timeout_ms=None`` therefore disables the timeout, while
    ``None`` for the other three falls back to the default at send time.
    Explicit ``False`` and ``0`` are always honoured.
    """

    url: str
    method: Method = Method.GET
    headers: Mapping[str, str] = field(default_factory=dict)
    query_params: Mapping[str, str] = field(default_factory=dict)
    auth: Auth = field(default_factory=NoAuth)
    body: Body = field(default_factory=NoBody)
    cookies: tuple[Cookie, ...] = ()
    timeout_ms: int | None = DEFAULT_TIMEOUT_MS
    follow_redirects: bool | None = True
    max_redirects: int | None = DEFAULT_MAX_REDIRECTS
    verify_ssl: bool | None = True
    proxy: ProxyConfig | None = None
    protocol: HttpProtocol | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", Method(str(self.method).upper()))
        object.__setattr__(self, "headers", _header_dict(self.headers))
        object.__setattr__(self, "query_params", dict(self.query_params))
        object.__setattr__(self, "cookies", tuple(self.cookies))
        if self.protocol is not None:
            object.__setattr__(self, "protocol", HttpProtocol(self.protocol))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ApiRequest:
        kwargs: dict[str, Any] = {
            "url": data["url"],
            "method": data.get("method", "GET"),
            "headers": data.get("headers") or {},
            "query_params": data.get("query_params") or {},
            "auth": auth_from_dict(data.get("auth", "None")),
            "body": body_from_dict(data.get("body", "None")),
            "cookies": [_cookie_from_dict(c) for c in data.get("cookies") or []],
        }
        for key in ("timeout_ms", "follow_redirects", "max_redirects", "verify_ssl"):
            if key in data:
                kwargs[key] = data[key]
        if data.get("proxy") is not None:
            kwargs["proxy"] = ProxyConfig(**data["proxy"])
        if data.get("protocol") is not None:
            kwargs["protocol"] = data["protocol"]
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        return {
            "method": self.method.value,
            "url": self.url,
            "headers": dict(self.headers),
            "body": body_to_dict(self.body),
            "auth": auth_to_dict(self.auth),
            "query_params": dict(self.query_params),
            "cookies": [_cookie_to_dict(c) for c in self.cookies],
            "timeout_ms": self.timeout_ms,
            "follow_redirects": self.follow_redirects,
            "max_redirects": self.max_redirects,
            "verify_ssl": self.verify_ssl,
            "proxy": None if self.proxy is None else _proxy_to_dict(self.proxy),
            "protocol": None if self.protocol is None else self.protocol.value,
        }


def _header_dict(headers: HeaderTypes) -> dict[str, str]:
    # Duplicate keys collapse to the last value given.
    items = headers.items() if isinstance(headers, Mapping) else headers
    return {str(name): str(value) for name, value in items}


# ---------------------------------------------------------------------------
# Response
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TimingInfo:
    total_ms: float = 0.0
    dns_lookup_ms: float = 0.0
    tcp_handshake_ms: float = 0.0
    tls_handshake_ms: float = 0.0
    transfer_start_ms: float = 0.0
    ttfb_ms: float = 0.0
    content_download_ms: float = 0.0


@dataclass(frozen=True)
class SizeInfo:
    headers_bytes: int = 0
    body_bytes: int = 0
    total_bytes: int = 0

    @classmethod
    def of(cls, headers_bytes: int, body_bytes: int) -> SizeInfo:
        return cls(headers_bytes, body_bytes, headers_bytes + body_bytes)


@dataclass(frozen=True)
class RedirectEntry:
    url: str
    status: int


@dataclass(frozen=True)
class ApiResponse:
    """The structured result of one execution.

    ``status == 0`` marks a transport-level failure; ``error`` then holds
    the classified diagnostic and no HTTP response was received.
    """

    status: int
    status_text: str
    headers: Mapping[str, str] = field(default_factory=dict)
    cookies: tuple[Cookie, ...] = ()
    body: bytes = b""
    timing: TimingInfo = field(default_factory=TimingInfo)
    request_size: SizeInfo = field(default_factory=SizeInfo)
    response_size: SizeInfo = field(default_factory=SizeInfo)
    redirects: tuple[RedirectEntry, ...] = ()
    remote_addr: str | None = None
    http_version: str = ""
    available_renderers: tuple[ResponseRenderer, ...] = (ResponseRenderer.RAW,)
    detected_content_type: str | None = None
    protocol_used: str = ""
    error: str | None = None

    @property
    def is_failure(self) -> bool:
        return self.status == 0

    @property
    def body_base64(self) -> str:
        return base64.b64encode(self.body).decode("ascii")

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return _json.loads(self.body)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "status_text": self.status_text,
            "headers": dict(self.headers),
            "cookies": [_cookie_to_dict(c) for c in self.cookies],
            "body_base64": self.body_base64,
            "timing": vars(self.timing).copy(),
            "request_size": vars(self.request_size).copy(),
            "response_size": vars(self.response_size).copy(),
            "redirects": [{"url": r.url, "status": r.status} for r in self.redirects],
            "remote_addr": self.remote_addr,
            "http_version": self.http_version,
            "available_renderers": [r.value for r in self.available_renderers],
            "detected_content_type": self.detected_content_type,
            "protocol_used": self.protocol_used,
            "error": self.error,
        }


# ---------------------------------------------------------------------------
# Tagged-variant serialization
# ---------------------------------------------------------------------------


def _tagged(data: Any) -> tuple[str, Mapping[str, Any]]:
    if isinstance(data, str):
        return data, {}
    if isinstance(data, Mapping) and len(data) == 1:
        tag, payload = next(iter(data.items()))
        return tag, {} if payload is None else payload
    raise ValueError(f"Expected a tagged variant, got {data!r}")


def auth_from_dict(data: Any) -> Auth:
    tag, payload = _tagged(data)
    if tag == "None":
        return NoAuth()
    if tag == "Basic":
        return BasicAuth(payload["username"], payload["password"])
    if tag == "Bearer":
        return BearerAuth(payload["token"])
    if tag == "ApiKey":
        return ApiKeyAuth(
            payload["key"], payload["value"], payload.get("add_to", ApiKeyLocation.HEADER)
        )
    raise ValueError(f"Unknown auth variant: {tag!r}")


def auth_to_dict(auth: Auth) -> Any:
    if isinstance(auth, NoAuth):
        return "None"
    if isinstance(auth, BasicAuth):
        return {"Basic": {"username": auth.username, "password": auth.password}}
    if isinstance(auth, BearerAuth):
        return {"Bearer": {"token": auth.token}}
    if isinstance(auth, ApiKeyAuth):
        return {
            "ApiKey": {"key": auth.key, "value": auth.value, "add_to": auth.location.value}
        }
    raise TypeError(f"Unsupported auth variant: {auth!r}")


def _multipart_field_from_dict(data: Mapping[str, Any]) -> MultipartField:
    tag, payload = _tagged(data["value"])
    if tag == "Text":
        value: MultipartText | MultipartFile = MultipartText(str(payload))
    elif tag == "File":
        value = MultipartFile(
            bytes(payload["data"]), payload["filename"], payload.get("content_type")
        )
    else:
        raise ValueError(f"Unknown multipart value: {tag!r}")
    return MultipartField(data["name"], value)


def _multipart_field_to_dict(part: MultipartField) -> dict[str, Any]:
    value = part.value
    if isinstance(value, MultipartText):
        return {"name": part.name, "value": {"Text": value.text}}
    return {
        "name": part.name,
        "value": {
            "File": {
                "data": list(value.data),
                "filename": value.filename,
                "content_type": value.content_type,
            }
        },
    }


def body_from_dict(data: Any) -> Body:
    tag, payload = _tagged(data)
    if tag == "None":
        return NoBody()
    if tag == "Raw":
        return RawBody(payload["content"], payload.get("content_type"))
    if tag == "FormUrlEncoded":
        return FormUrlEncodedBody(payload.get("fields") or {})
    if tag == "Multipart":
        return MultipartBody(
            tuple(_multipart_field_from_dict(f) for f in payload.get("fields") or [])
        )
    if tag == "Binary":
        return BinaryBody(bytes(payload["data"]), payload.get("filename"))
    raise ValueError(f"Unknown body variant: {tag!r}")


def body_to_dict(body: Body) -> Any:
    if isinstance(body, NoBody):
        return "None"
    if isinstance(body, RawBody):
        return {"Raw": {"content": body.content, "content_type": body.content_type}}
    if isinstance(body, FormUrlEncodedBody):
        return {"FormUrlEncoded": {"fields": dict(body.fields)}}
    if isinstance(body, MultipartBody):
        return {"Multipart": {"fields": [_multipart_field_to_dict(f) for f in body.fields]}}
    if isinstance(body, BinaryBody):
        return {"Binary": {"data": list(body.data), "filename": body.filename}}
    raise TypeError(f"Unsupported body variant: {body!r}")


def _cookie_from_dict(data: Mapping[str, Any]) -> Cookie:
    return Cookie(
        name=data["name"],
        value=data["value"],
        domain=data.get("domain"),
        path=data.get("path"),
        expires=data.get("expires"),
        http_only=data.get("http_only"),
        secure=data.get("secure"),
    )


def _cookie_to_dict(cookie: Cookie) -> dict[str, Any]:
    return vars(cookie).copy()


def _proxy_to_dict(proxy: ProxyConfig) -> dict[str, Any]:
    return {"url": proxy.url, "username": proxy.username, "password": proxy.password}
