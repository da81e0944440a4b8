from __future__ import annotations

import json as _json
import typing

from ._builder import BuiltRequest
from ._classifier import FAILED_STATUS_TEXT, TransportFailure, compose_error
from ._models import ApiResponse, Cookie, ResponseRenderer, SizeInfo, TimingInfo
from ._transports.base import PhaseTimestamps, RawExchange

DEFAULT_HTTP_VERSION = "HTTP/1.1"

STATUS_TEXT = {
    100: "Continue",
    101: "Switching Protocols",
    200: "OK",
    201: "Created",
    202: "Accepted",
    204: "No Content",
    206: "Partial Content",
    301: "Moved Permanently",
    302: "Found",
    303: "See Other",
    304: "Not Modified",
    307: "Temporary Redirect",
    308: "Permanent Redirect",
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    408: "Request Timeout",
    409: "Conflict",
    410: "Gone",
    413: "Payload Too Large",
    414: "URI Too Long",
    415: "Unsupported Media Type",
    422: "Unprocessable Entity",
    429: "Too Many Requests",
    500: "Internal Server Error",
    501: "Not Implemented",
    502: "Bad Gateway",
    503: "Service Unavailable",
    504: "Gateway Timeout",
}

_IMAGE_TYPES = (
    "image/png",
    "image/jpeg",
    "image/gif",
    "image/webp",
    "image/svg",
    "image/bmp",
    "image/ico",
)


class ParsedHeaders(typing.NamedTuple):
    http_version: str
    headers: dict[str, str]
    cookies: tuple[Cookie, ...]


def status_text(status: int) -> str:
    return STATUS_TEXT.get(status, f"Status {status}")


def normalize_protocol(http_version: str) -> str:
    if "3" in http_version:
        return "HTTP/3"
    if "2" in http_version:
        return "HTTP/2"
    return http_version


def header_bytes(headers: typing.Iterable[tuple[str, str]]) -> int:
    """Size of ``headers`` when written as ``Name: value`` CRLF lines."""
    return sum(len(f"{name}: {value}\r\n".encode("utf-8")) for name, value in headers)


# ---------------------------------------------------------------------------
# Timing
# ---------------------------------------------------------------------------


def compute_timing(
    phases: PhaseTimestamps | None, total_ms: float, supports_phase_timing: bool
) -> TimingInfo:
    """Turn phase boundaries into per-phase durations.

    Transports that only measure wall-clock time report zero for every
    sub-phase. Durations are clamped at zero because boundaries may be
    recorded out of order.
    """
    if not supports_phase_timing or phases is None:
        return TimingInfo(total_ms=total_ms)
    return TimingInfo(
        total_ms=phases.total,
        dns_lookup_ms=max(0.0, phases.dns),
        tcp_handshake_ms=max(0.0, phases.connect - phases.dns),
        tls_handshake_ms=max(0.0, phases.tls - phases.connect),
        transfer_start_ms=max(0.0, phases.pretransfer - phases.tls),
        ttfb_ms=max(0.0, phases.firstbyte - phases.pretransfer),
        content_download_ms=max(0.0, phases.total - phases.firstbyte),
    )


# ---------------------------------------------------------------------------
# Headers & cookies
# ---------------------------------------------------------------------------


def parse_set_cookie(header_value: str) -> Cookie | None:
    parts = header_value.split(";")
    name, sep, value = parts[0].partition("=")
    if not sep:
        return None

    attributes: dict[str, typing.Any] = {}
    for part in parts[1:]:
        attr_name, attr_sep, attr_value = part.partition("=")
        attr_name = attr_name.strip().lower()
        parsed_value = attr_value.strip() if attr_sep else None
        if attr_name in ("domain", "path", "expires"):
            attributes[attr_name] = parsed_value
        elif attr_name == "httponly":
            attributes["http_only"] = True
        elif attr_name == "secure":
            attributes["secure"] = True

    return Cookie(name=name.strip(), value=value.strip(), **attributes)


def parse_header_block(raw: bytes | str) -> ParsedHeaders:
    """Canonicalize a raw header block.

    Status lines set the HTTP version. Repeated header names are joined
    with ``", "``; every ``Set-Cookie`` line yields its own cookie.
    """
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    http_version = DEFAULT_HTTP_VERSION
    headers: dict[str, str] = {}
    cookies: list[Cookie] = []

    for line in text.splitlines():
        if line.startswith("HTTP/"):
            http_version = line.split(" ", 2)[0]
            continue
        name, sep, value = line.partition(":")
        if not sep:
            continue
        name = name.strip()
        value = value.strip()

        if name.lower() == "set-cookie":
            cookie = parse_set_cookie(value)
            if cookie is not None:
                cookies.append(cookie)

        if name in headers:
            headers[name] = f"{headers[name]}, {value}"
        else:
            headers[name] = value

    return ParsedHeaders(http_version, headers, tuple(cookies))


def detect_content_type(headers: typing.Mapping[str, str]) -> str | None:
    for name, value in headers.items():
        if name.lower() == "content-type":
            return value
    return None


# ---------------------------------------------------------------------------
# Renderers
# ---------------------------------------------------------------------------


def _is_json(body: bytes) -> bool:
    try:
        _json.loads(body)
    except (ValueError, RecursionError):
        return False
    return True


def detect_renderers(
    content_type: str | None, body: bytes
) -> tuple[ResponseRenderer, ...]:
    """Every way the body could be displayed. ``Raw`` is always first."""
    renderers = [ResponseRenderer.RAW]
    ct = (content_type or "").lower()

    if "application/json" in ct or "+json" in ct:
        if _is_json(body):
            renderers.append(ResponseRenderer.JSON)
    elif body.startswith((b"{", b"[")) and _is_json(body):
        renderers.append(ResponseRenderer.JSON)

    if "text/html" in ct or "application/xhtml" in ct:
        renderers.extend((ResponseRenderer.HTML, ResponseRenderer.HTML_PREVIEW))
    elif "application/xml" in ct or "text/xml" in ct or "+xml" in ct:
        renderers.append(ResponseRenderer.XML)
    else:
        sniffed = body.decode("utf-8", errors="replace").lstrip()
        if sniffed.startswith("<?xml"):
            renderers.append(ResponseRenderer.XML)
        elif sniffed.startswith(("<!DOCTYPE html", "<html")):
            renderers.extend((ResponseRenderer.HTML, ResponseRenderer.HTML_PREVIEW))

    if any(image_type in ct for image_type in _IMAGE_TYPES):
        renderers.append(ResponseRenderer.IMAGE)
    if "application/pdf" in ct:
        renderers.append(ResponseRenderer.PDF)
    if "audio/" in ct:
        renderers.append(ResponseRenderer.AUDIO)
    if "video/" in ct:
        renderers.append(ResponseRenderer.VIDEO)

    return tuple(renderers)


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------


def request_size(request: BuiltRequest) -> SizeInfo:
    return SizeInfo.of(header_bytes(request.headers), request.body_size)


def analyze_exchange(
    request: BuiltRequest, exchange: RawExchange, supports_phase_timing: bool
) -> ApiResponse:
    parsed = parse_header_block(exchange.raw_headers)
    content_type = detect_content_type(parsed.headers)
    return ApiResponse(
        status=exchange.status,
        status_text=status_text(exchange.status),
        headers=parsed.headers,
        cookies=parsed.cookies,
        body=exchange.body,
        timing=compute_timing(exchange.phases, exchange.total_ms, supports_phase_timing),
        request_size=request_size(request),
        response_size=SizeInfo.of(len(exchange.raw_headers), len(exchange.body)),
        redirects=(),
        remote_addr=exchange.remote_addr,
        http_version=parsed.http_version,
        available_renderers=detect_renderers(content_type, exchange.body),
        detected_content_type=content_type,
        protocol_used=normalize_protocol(parsed.http_version),
    )


def analyze_failure(request: BuiltRequest, failure: TransportFailure) -> ApiResponse:
    return ApiResponse(
        status=0,
        status_text=FAILED_STATUS_TEXT,
        timing=TimingInfo(total_ms=failure.elapsed_ms),
        request_size=request_size(request),
        error=compose_error(failure),
    )
