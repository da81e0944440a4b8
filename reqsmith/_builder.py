from __future__ import annotations

import base64
import typing
import uuid

from ._models import (
    DEFAULT_MAX_REDIRECTS,
    ApiKeyAuth,
    ApiKeyLocation,
    ApiRequest,
    Auth,
    BasicAuth,
    BearerAuth,
    BinaryBody,
    Body,
    Cookie,
    FormUrlEncodedBody,
    HttpProtocol,
    Method,
    MultipartBody,
    MultipartFile,
    MultipartText,
    NoAuth,
    NoBody,
    ProxyConfig,
    RawBody,
)
from ._urlparse import form_urlencode, urlparse

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
OCTET_STREAM = "application/octet-stream"

Header = typing.Tuple[str, str]


class BuiltRequest(typing.NamedTuple):
    """Transport primitives lowered from an :class:`ApiRequest`."""

    method: Method
    url: str
    headers: tuple[Header, ...]
    body: bytes | None
    content_type: str | None
    body_size: int


class ExchangePolicy(typing.NamedTuple):
    """Resolved transfer policy; ``timeout_ms=None`` means no enforced timeout."""

    timeout_ms: int | None
    follow_redirects: bool
    max_redirects: int
    verify_ssl: bool
    proxy: ProxyConfig | None
    protocol: HttpProtocol | None


def resolve_policy(request: ApiRequest) -> ExchangePolicy:
    # A zero timeout means "no timeout", as it does for libcurl.
    timeout_ms = request.timeout_ms or None
    return ExchangePolicy(
        timeout_ms=timeout_ms,
        follow_redirects=True if request.follow_redirects is None else request.follow_redirects,
        max_redirects=(
            DEFAULT_MAX_REDIRECTS if request.max_redirects is None else request.max_redirects
        ),
        verify_ssl=True if request.verify_ssl is None else request.verify_ssl,
        proxy=request.proxy,
        protocol=request.protocol,
    )


def build_request(request: ApiRequest) -> BuiltRequest:
    """Lower ``request`` into a final URL, an ordered header list and body bytes.

    Raises :class:`~reqsmith.InvalidUrl` when the base URL does not parse.
    The output is deterministic except for the multipart boundary.
    """
    url = build_url(request.url, request.query_params, request.auth)

    headers: list[Header] = list(request.headers.items())
    headers.extend(auth_headers(request.auth))
    if request.cookies:
        headers.append(("Cookie", cookie_header(request.cookies)))

    body, content_type = encode_body(request.body)
    if content_type is not None:
        headers.append(("Content-Type", content_type))

    return BuiltRequest(
        method=request.method,
        url=url,
        headers=tuple(headers),
        body=body,
        content_type=content_type,
        body_size=0 if body is None else len(body),
    )


def build_url(base_url: str, query_params: typing.Mapping[str, str], auth: Auth) -> str:
    pairs = list(query_params.items())
    if isinstance(auth, ApiKeyAuth) and auth.location is ApiKeyLocation.QUERY:
        pairs.append((auth.key, auth.value))
    return str(urlparse(base_url).with_query_pairs(pairs))


def auth_headers(auth: Auth) -> list[Header]:
    if isinstance(auth, NoAuth):
        return []
    if isinstance(auth, BasicAuth):
        userpass = f"{auth.username}:{auth.password}".encode("utf-8")
        return [("Authorization", "Basic " + base64.b64encode(userpass).decode("ascii"))]
    if isinstance(auth, BearerAuth):
        return [("Authorization", f"Bearer {auth.token}")]
    if isinstance(auth, ApiKeyAuth):
        if auth.location is ApiKeyLocation.HEADER:
            return [(auth.key, auth.value)]
        return []
    raise TypeError(f"Unsupported auth variant: {auth!r}")


def cookie_header(cookies: typing.Iterable[Cookie]) -> str:
    return "; ".join(f"{cookie.name}={cookie.value}" for cookie in cookies)


def encode_body(body: Body) -> tuple[bytes | None, str | None]:
    """Return ``(payload, content_type)`` for one body variant."""
    if isinstance(body, NoBody):
        return None, None
    if isinstance(body, RawBody):
        return body.content.encode("utf-8"), body.content_type
    if isinstance(body, FormUrlEncodedBody):
        return form_urlencode(body.fields.items()).encode("ascii"), FORM_CONTENT_TYPE
    if isinstance(body, MultipartBody):
        boundary = make_boundary()
        return (
            encode_multipart(body, boundary),
            f"multipart/form-data; boundary={boundary}",
        )
    if isinstance(body, BinaryBody):
        return bytes(body.data), OCTET_STREAM
    raise TypeError(f"Unsupported body variant: {body!r}")


def make_boundary() -> str:
    return f"----ReqsmithFormBoundary{uuid.uuid4().hex}"


def encode_multipart(body: MultipartBody, boundary: str) -> bytes:
    # Part payloads are not scanned for the boundary string.
    chunks: list[bytes] = []
    for part in body.fields:
        chunks.append(f"--{boundary}\r\n".encode("utf-8"))
        value = part.value
        if isinstance(value, MultipartText):
            chunks.append(
                f'Content-Disposition: form-data; name="{part.name}"\r\n\r\n'.encode("utf-8")
            )
            chunks.append(value.text.encode("utf-8"))
        elif isinstance(value, MultipartFile):
            content_type = value.content_type or OCTET_STREAM
            chunks.append(
                (
                    f'Content-Disposition: form-data; name="{part.name}"; '
                    f'filename="{value.filename}"\r\n'
                    f"Content-Type: {content_type}\r\n\r\n"
                ).encode("utf-8")
            )
            chunks.append(bytes(value.data))
        else:
            raise TypeError(f"Unsupported multipart value: {value!r}")
        chunks.append(b"\r\n")
    chunks.append(f"--{boundary}--\r\n".encode("utf-8"))
    return b"".join(chunks)
