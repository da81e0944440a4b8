from __future__ import annotations

import logging
import ssl
import time
import typing

import httpx

from .._builder import BuiltRequest, ExchangePolicy
from .._classifier import FailureKind, TransportFailure, failure_from_exception
from .._models import HttpProtocol, Method
from .base import (
    PhaseTimestamps,
    RawExchange,
    Transport,
    encode_headers,
    render_header_block,
)

logger = logging.getLogger("reqsmith.transports")


class PhaseRecorder:
    """httpcore ``trace`` extension that stamps connection and transfer phases.

    httpcore resolves host names inside ``connect_tcp``, so DNS time is
    folded into the TCP handshake and ``dns`` marks the moment the connect
    attempt starts.
    """

    def __init__(self, start: float | None = None) -> None:
        self.start = time.perf_counter() if start is None else start
        self.marks: dict[str, float] = {}
        self.remote_addr: str | None = None

    def __call__(self, event_name: str, info: dict[str, typing.Any]) -> None:
        # "connection.connect_tcp.complete" -> "connect_tcp.complete"
        _, _, event = event_name.partition(".")
        now = self.elapsed_ms()
        if event in ("connect_tcp.started", "connect_tcp.complete", "start_tls.complete"):
            # Keep the first connection of a redirect chain.
            self.marks.setdefault(event, now)
        else:
            self.marks[event] = now
        if event == "connect_tcp.complete" and self.remote_addr is None:
            self.remote_addr = _server_addr(info.get("return_value"))

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.start) * 1000.0

    def phases(self, total_ms: float) -> PhaseTimestamps:
        marks = self.marks
        dns = marks.get("connect_tcp.started", 0.0)
        connect = marks.get("connect_tcp.complete", dns)
        tls = marks.get("start_tls.complete", connect)
        pretransfer = marks.get("send_request_headers.started", tls)
        firstbyte = marks.get("receive_response_headers.complete", pretransfer)
        return PhaseTimestamps(dns, connect, tls, pretransfer, firstbyte, total_ms)


def _server_addr(stream: typing.Any) -> str | None:
    if stream is None:
        return None
    addr = stream.get_extra_info("server_addr")
    if not addr:
        return None
    return str(addr[0])


def _past_deadline(recorder: PhaseRecorder, deadline_ms: int | None) -> bool:
    return deadline_ms is not None and recorder.elapsed_ms() > deadline_ms


def _deadline_failure(recorder: PhaseRecorder, received: int) -> TransportFailure:
    elapsed_ms = recorder.elapsed_ms()
    return TransportFailure(
        frozenset({FailureKind.TIMED_OUT}),
        f"Operation timed out after {elapsed_ms:.0f} milliseconds with {received} bytes received",
        elapsed_ms,
    )


def _insecure_ssl_context() -> ssl.SSLContext:
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


def client_options(policy: ExchangePolicy) -> dict[str, typing.Any]:
    """Keyword arguments for an httpx-compatible ``Client`` honouring ``policy``."""
    proxy: httpx.Proxy | None = None
    if policy.proxy is not None:
        proxy = httpx.Proxy(
            policy.proxy.url,
            auth=policy.proxy.credentials,
            ssl_context=None if policy.verify_ssl else _insecure_ssl_context(),
        )
    timeout = None if policy.timeout_ms is None else policy.timeout_ms / 1000.0
    return {
        "verify": policy.verify_ssl,
        "follow_redirects": policy.follow_redirects,
        "max_redirects": policy.max_redirects,
        "timeout": httpx.Timeout(timeout),
        "proxy": proxy,
    }


class HTTPXTransport(Transport):
    """Sends requests with ``httpx``, reporting per-phase timestamps.

    HTTP/2 is offered through ALPN and HTTP/1.1 is used when the server
    declines. A fresh client is opened per exchange, so nothing is shared
    between calls.

    Parameters
    ----------
    http2:
        Offer HTTP/2 during the TLS handshake (default ``True``).
    transport:
        Optional httpx transport to mount instead of the network, e.g.
        :class:`httpx.MockTransport` in tests.
    trust_env:
        Honour ``HTTP_PROXY`` / ``SSL_CERT_FILE`` style environment variables.
        Off by default so the request model alone decides the policy.
    """

    supports_phase_timing = True

    def __init__(
        self,
        *,
        http2: bool = True,
        transport: httpx.BaseTransport | None = None,
        trust_env: bool = False,
    ) -> None:
        self._http2 = http2
        self._transport = transport
        self._trust_env = trust_env

    def send(
        self, request: BuiltRequest, policy: ExchangePolicy
    ) -> RawExchange | TransportFailure:
        if policy.protocol is HttpProtocol.QUIC:
            logger.debug("HTTP/3 was requested but is not negotiated; using TCP")

        try:
            options = client_options(policy)
        except (ValueError, httpx.InvalidURL) as exc:
            return TransportFailure(
                frozenset({FailureKind.CONNECT_FAILED}), f"Invalid proxy configuration: {exc}"
            )

        recorder = PhaseRecorder()
        deadline_ms = policy.timeout_ms
        try:
            with httpx.Client(
                http2=self._http2,
                transport=self._transport,
                trust_env=self._trust_env,
                **options,
            ) as client:
                with client.stream(
                    request.method.value,
                    request.url,
                    headers=encode_headers(request.headers),
                    content=request.body,
                    extensions={"trace": recorder},
                ) as response:
                    chunks: list[bytes] = []
                    received = 0
                    for chunk in response.iter_bytes():
                        chunks.append(chunk)
                        received += len(chunk)
                        if _past_deadline(recorder, deadline_ms):
                            return _deadline_failure(recorder, received)
                    total_ms = recorder.elapsed_ms()
                    # httpx applies the timeout per phase, so slow headers or an
                    # empty body can still overrun the overall budget.
                    if _past_deadline(recorder, deadline_ms):
                        return _deadline_failure(recorder, received)
                    raw_headers = render_header_block(
                        response.http_version,
                        response.status_code,
                        response.reason_phrase,
                        response.headers.raw,
                    )
        except httpx.HTTPError as exc:
            logger.debug("%s %s raised %r", request.method.value, request.url, exc)
            return failure_from_exception(exc, recorder.elapsed_ms())

        if request.method is Method.HEAD:
            chunks = []

        return RawExchange(
            status=response.status_code,
            raw_headers=raw_headers,
            body=b"".join(chunks),
            total_ms=total_ms,
            phases=recorder.phases(total_ms),
            remote_addr=recorder.remote_addr,
        )
