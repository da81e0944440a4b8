from __future__ import annotations

import logging
import time
import typing

import httpxr

from .._builder import BuiltRequest, ExchangePolicy
from .._classifier import FailureKind, TransportFailure, failure_from_exception
from .._models import Method
from .base import RawExchange, Transport, encode_headers, render_header_block

logger = logging.getLogger("reqsmith.transports")


class HTTPXRTransport(Transport):
    """Sends requests with the Rust-backed ``httpxr`` client.

    Only the wall-clock total is measured, so every sub-phase of the
    resulting timing breakdown is zero. The remote address is not exposed
    by this client.
    """

    supports_phase_timing = False

    def __init__(
        self,
        *,
        http2: bool = True,
        transport: typing.Any | None = None,
        trust_env: bool = False,
    ) -> None:
        self._http2 = http2
        self._transport = transport
        self._trust_env = trust_env

    def _client_options(self, policy: ExchangePolicy) -> dict[str, typing.Any]:
        proxy = None
        if policy.proxy is not None:
            proxy = httpxr.Proxy(policy.proxy.url, auth=policy.proxy.credentials)
        timeout = None if policy.timeout_ms is None else policy.timeout_ms / 1000.0
        options: dict[str, typing.Any] = {
            "verify": policy.verify_ssl,
            "follow_redirects": policy.follow_redirects,
            "max_redirects": policy.max_redirects,
            "timeout": httpxr.Timeout(timeout),
            "http2": self._http2,
            "trust_env": self._trust_env,
        }
        if proxy is not None:
            options["proxy"] = proxy
        if self._transport is not None:
            options["transport"] = self._transport
        return options

    def send(
        self, request: BuiltRequest, policy: ExchangePolicy
    ) -> RawExchange | TransportFailure:
        try:
            options = self._client_options(policy)
        except (ValueError, httpxr.InvalidURL) as exc:
            return TransportFailure(
                frozenset({FailureKind.CONNECT_FAILED}), f"Invalid proxy configuration: {exc}"
            )

        start = time.perf_counter()
        try:
            with httpxr.Client(**options) as client:
                response = client.request(
                    request.method.value,
                    request.url,
                    headers=encode_headers(request.headers),
                    content=request.body,
                )
                body = response.content
        except httpxr.HTTPError as exc:
            elapsed_ms = (time.perf_counter() - start) * 1000.0
            logger.debug("%s %s raised %r", request.method.value, request.url, exc)
            return failure_from_exception(exc, elapsed_ms)
        total_ms = (time.perf_counter() - start) * 1000.0

        if policy.timeout_ms is not None and total_ms > policy.timeout_ms:
            return TransportFailure(
                frozenset({FailureKind.TIMED_OUT}),
                f"Operation timed out after {total_ms:.0f} milliseconds",
                total_ms,
            )

        return RawExchange(
            status=response.status_code,
            raw_headers=render_header_block(
                response.http_version,
                response.status_code,
                response.reason_phrase,
                response.headers.raw,
            ),
            body=b"" if request.method is Method.HEAD else body,
            total_ms=total_ms,
        )
