# ruff: noqa: I001
from .__version__ import __description__, __title__, __version__
from ._analyzer import (
    STATUS_TEXT,
    compute_timing,
    detect_content_type,
    detect_renderers,
    header_bytes,
    normalize_protocol,
    parse_header_block,
    parse_set_cookie,
    status_text,
)
from ._builder import BuiltRequest, ExchangePolicy, build_request, resolve_policy
from ._classifier import (
    FAILED_STATUS_TEXT,
    FailureKind,
    TransportFailure,
    compose_error,
    failure_kinds_from_exception,
)
from ._engine import aexecute, execute
from ._exceptions import CurlParseError, InvalidUrl
from ._models import (
    DEFAULT_MAX_REDIRECTS,
    DEFAULT_TIMEOUT_MS,
    ApiKeyAuth,
    ApiKeyLocation,
    ApiRequest,
    ApiResponse,
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
    MultipartField,
    MultipartFile,
    MultipartText,
    NoAuth,
    NoBody,
    ProxyConfig,
    RawBody,
    RedirectEntry,
    ResponseRenderer,
    SizeInfo,
    TimingInfo,
)
from ._transports import HTTPXTransport, PhaseTimestamps, RawExchange, Transport
from .curl import generate_curl, parse_curl

try:
    from .cli import main
except ImportError:

    def main() -> None:  # type: ignore[misc]
        import sys

        print(
            'The "reqsmith" command requires the CLI extra. '
            'Install it with: pip install "reqsmith[cli]"',
            file=sys.stderr,
        )
        sys.exit(1)


def __getattr__(name: str):
    # httpxr is an optional extra; import its transport on first use.
    if name == "HTTPXRTransport":
        from ._transports.rust import HTTPXRTransport

        return HTTPXRTransport
    raise AttributeError(f"module 'reqsmith' has no attribute {name!r}")


_EXCLUDED_FROM_ALL = {"cli", "main"}

_members = [
    member
    for member in list(vars().keys())
    if (
        not member.startswith("_")
        or member in ["__description__", "__title__", "__version__"]
    )
    and member not in _EXCLUDED_FROM_ALL
]
__all__ = sorted(_members, key=str.casefold)  # pyright: ignore[reportUnsupportedDunderAll]
