from __future__ import annotations

import enum
import socket
import ssl
import typing

FAILED_STATUS_TEXT = "Request Failed"


class FailureKind(enum.Enum):
    """Transport failure categories, in the order their prefixes are emitted."""

    HOST_RESOLUTION_FAILED = "Could not resolve host. "
    CONNECT_FAILED = "Could not connect. "
    TIMED_OUT = "Operation timed out. "
    TLS_CONNECT_ERROR = "SSL connect error. "
    CERTIFICATE_VERIFICATION_FAILED = "SSL certificate verification failed. "
    TOO_MANY_REDIRECTS = "Too many redirects. "
    BODY_ERROR = "Failed to transfer the message body. "
    DECODE_ERROR = "Failed to decode the response content. "

    @property
    def prefix(self) -> str:
        return self.value


class TransportFailure(typing.NamedTuple):
    """A failed exchange, returned by transports instead of raised."""

    kinds: frozenset[FailureKind]
    detail: str
    elapsed_ms: float = 0.0


def compose_error(failure: TransportFailure) -> str:
    """Concatenate the prefix of every reported category, then the detail.

    >>> compose_error(TransportFailure(frozenset({FailureKind.TIMED_OUT}), "boom"))
    'Operation timed out. boom'
    """
    prefixes = "".join(kind.prefix for kind in FailureKind if kind in failure.kinds)
    return prefixes + failure.detail


# Lower-cased fragments seen in diagnostics of transports that do not
# chain the underlying OS error.
_RESOLUTION_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo",
    "failed to lookup address",
    "dns error",
    "no address associated with hostname",
    "temporary failure in name resolution",
)
_CERTIFICATE_MARKERS = (
    "certificate verify failed",
    "invalid peer certificate",
    "unknownissuer",
    "self signed certificate",
    "self-signed certificate",
)
_TLS_MARKERS = ("ssl", "tls", "handshake")


def _exception_chain(exc: BaseException) -> typing.Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def _connect_kinds(exc: BaseException) -> set[FailureKind]:
    chain = list(_exception_chain(exc))
    message = " ".join(str(e) for e in chain).lower()

    if any(isinstance(e, socket.gaierror) for e in chain) or any(
        marker in message for marker in _RESOLUTION_MARKERS
    ):
        return {FailureKind.HOST_RESOLUTION_FAILED}
    if any(isinstance(e, ssl.SSLCertVerificationError) for e in chain) or any(
        marker in message for marker in _CERTIFICATE_MARKERS
    ):
        return {FailureKind.CERTIFICATE_VERIFICATION_FAILED}
    if any(isinstance(e, ssl.SSLError) for e in chain) or any(
        marker in message for marker in _TLS_MARKERS
    ):
        return {FailureKind.TLS_CONNECT_ERROR}
    return {FailureKind.CONNECT_FAILED}


def failure_kinds_from_exception(exc: BaseException) -> frozenset[FailureKind]:
    """Map an httpx-style exception onto failure categories.

    Matching is done on class names along the MRO so that any client that
    mirrors the httpx exception hierarchy (httpx itself, httpxr) is
    classified the same way.
    """
    names = {cls.__name__ for cls in type(exc).__mro__}
    kinds: set[FailureKind] = set()

    if "TimeoutException" in names or isinstance(exc, TimeoutError):
        kinds.add(FailureKind.TIMED_OUT)
    elif "ConnectError" in names or "ProxyError" in names:
        kinds.update(_connect_kinds(exc))
    elif isinstance(exc, (ssl.SSLError, socket.gaierror)):
        kinds.update(_connect_kinds(exc))

    if "TooManyRedirects" in names:
        kinds.add(FailureKind.TOO_MANY_REDIRECTS)
    if "DecodingError" in names:
        kinds.add(FailureKind.DECODE_ERROR)
    if names & {"ReadError", "WriteError", "StreamError"}:
        kinds.add(FailureKind.BODY_ERROR)

    return frozenset(kinds)


def failure_from_exception(exc: BaseException, elapsed_ms: float = 0.0) -> TransportFailure:
    detail = str(exc) or type(exc).__name__
    return TransportFailure(failure_kinds_from_exception(exc), detail, elapsed_ms)
