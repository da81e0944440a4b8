from __future__ import annotations

import typing

from .._builder import BuiltRequest, ExchangePolicy
from .._classifier import TransportFailure


class PhaseTimestamps(typing.NamedTuple):
    """Phase boundaries in milliseconds, all measured from request start.

    Boundaries are expected to be ordered but are not guaranteed to be: a
    reused or plain-text connection can report them out of order.
    """

    dns: float = 0.0
    connect: float = 0.0
    tls: float = 0.0
    pretransfer: float = 0.0
    firstbyte: float = 0.0
    total: float = 0.0


class RawExchange(typing.NamedTuple):
    """What a transport captured from one completed exchange."""

    status: int
    # Status line plus header lines, CRLF terminated, as seen on the wire.
    raw_headers: bytes
    body: bytes
    total_ms: float
    phases: PhaseTimestamps | None = None
    remote_addr: str | None = None


class Transport:
    """Performs the socket I/O for one built request.

    Implementations never raise for network-level problems: they return a
    :class:`~reqsmith.TransportFailure` instead. ``supports_phase_timing``
    declares whether :attr:`RawExchange.phases` is populated.
    """

    supports_phase_timing: bool = False

    def send(
        self, request: BuiltRequest, policy: ExchangePolicy
    ) -> RawExchange | TransportFailure:
        raise NotImplementedError()  # pragma: no cover


def render_header_block(
    http_version: str,
    status: int,
    reason: str,
    headers: typing.Iterable[tuple[bytes, bytes]],
) -> bytes:
    lines = [f"{http_version} {status} {reason}".rstrip().encode("latin-1", errors="replace")]
    lines.extend(name + b": " + value for name, value in headers)
    return b"\r\n".join(lines) + b"\r\n\r\n"


def encode_headers(headers: typing.Iterable[tuple[str, str]]) -> list[tuple[bytes, bytes]]:
    """Header pairs as UTF-8 bytes, sent on the wire without re-encoding."""
    return [(name.encode("utf-8"), value.encode("utf-8")) for name, value in headers]
