from __future__ import annotations

import logging

import anyio.to_thread

from ._analyzer import analyze_exchange, analyze_failure
from ._builder import build_request, resolve_policy
from ._classifier import TransportFailure
from ._models import ApiRequest, ApiResponse
from ._transports import HTTPXTransport, Transport

logger = logging.getLogger("reqsmith.engine")


def execute(request: ApiRequest, transport: Transport | None = None) -> ApiResponse:
    """Run one request/response exchange.

    Raises :class:`~reqsmith.InvalidUrl` when the base URL does not parse,
    before any network activity. Every other failure comes back as an
    :class:`~reqsmith.ApiResponse` with ``status == 0`` and ``error`` set.
    """
    built = build_request(request)
    policy = resolve_policy(request)
    if transport is None:
        transport = HTTPXTransport()

    if not policy.verify_ssl:
        logger.warning("TLS certificate verification is disabled for %s", built.url)
    logger.debug(
        "Sending %s %s (%d header(s), %d body byte(s))",
        built.method.value,
        built.url,
        len(built.headers),
        built.body_size,
    )

    outcome = transport.send(built, policy)
    if isinstance(outcome, TransportFailure):
        response = analyze_failure(built, outcome)
        logger.info("%s %s failed: %s", built.method.value, built.url, response.error)
        return response

    response = analyze_exchange(built, outcome, transport.supports_phase_timing)
    logger.debug(
        "%s %s -> %d %s in %.1fms",
        built.method.value,
        built.url,
        response.status,
        response.status_text,
        response.timing.total_ms,
    )
    return response


async def aexecute(request: ApiRequest, transport: Transport | None = None) -> ApiResponse:
    """Async version of :func:`execute`, run on a worker thread."""
    return await anyio.to_thread.run_sync(execute, request, transport)
