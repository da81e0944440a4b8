from __future__ import annotations

import json
import sys
import typing

import click

from ._engine import execute
from ._exceptions import CurlParseError, InvalidUrl
from ._models import (
    ApiKeyAuth,
    ApiKeyLocation,
    ApiRequest,
    ApiResponse,
    Auth,
    BasicAuth,
    BearerAuth,
    Body,
    FormUrlEncodedBody,
    NoAuth,
    NoBody,
    ProxyConfig,
    RawBody,
    ResponseRenderer,
)
from .curl import generate_curl, parse_curl

# ---------------------------------------------------------------------------
# Rich output helpers (graceful fallback when rich is not installed)
# ---------------------------------------------------------------------------

try:
    from rich.console import Console
    from rich.syntax import Syntax
    from rich.text import Text

    HAS_RICH = True
except ImportError:  # pragma: no cover
    HAS_RICH = False


def _status_color(status_code: int) -> str:
    """Return a rich color name based on HTTP status category."""
    if status_code == 0:
        return "bold red"
    elif status_code < 200:
        return "cyan"
    elif status_code < 300:
        return "green"
    elif status_code < 400:
        return "yellow"
    elif status_code < 500:
        return "red"
    else:
        return "bold red"


def is_binary_content(content: bytes) -> bool:
    return b"\0" in content


def is_text_response(response: ApiResponse) -> bool:
    binary = {
        ResponseRenderer.IMAGE,
        ResponseRenderer.AUDIO,
        ResponseRenderer.VIDEO,
        ResponseRenderer.PDF,
    }
    if binary.intersection(response.available_renderers):
        return False
    return not is_binary_content(response.body)


def format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.2f} KB"
    return f"{size / (1024 * 1024):.2f} MB"


def format_timing(response: ApiResponse) -> str:
    timing = response.timing
    phases = [
        ("DNS", timing.dns_lookup_ms),
        ("TCP", timing.tcp_handshake_ms),
        ("TLS", timing.tls_handshake_ms),
        ("Wait", timing.transfer_start_ms),
        ("TTFB", timing.ttfb_ms),
        ("Download", timing.content_download_ms),
        ("Total", timing.total_ms),
    ]
    return "  ".join(f"{label}: {value:.1f}ms" for label, value in phases)


def format_sizes(response: ApiResponse) -> str:
    req, resp = response.request_size, response.response_size
    return (
        f"Request: {format_bytes(req.total_bytes)} "
        f"(headers {format_bytes(req.headers_bytes)}, body {format_bytes(req.body_bytes)})  "
        f"Response: {format_bytes(resp.total_bytes)} "
        f"(headers {format_bytes(resp.headers_bytes)}, body {format_bytes(resp.body_bytes)})"
    )


def _pretty_json(response: ApiResponse) -> str | None:
    if ResponseRenderer.JSON not in response.available_renderers:
        return None
    return json.dumps(response.json(), indent=4, ensure_ascii=False)


# ---------------------------------------------------------------------------
# Plain-text formatter (used with --no-color or when rich is missing)
# ---------------------------------------------------------------------------


def format_response_plain(response: ApiResponse) -> str:
    status_line = f"{response.http_version} {response.status} {response.status_text}"
    lines: list[str] = [status_line.strip()]

    for key, value in response.headers.items():
        lines.append(f"{key}: {value}")

    lines.append("")

    if response.body:
        formatted = _pretty_json(response)
        if formatted is not None:
            lines.append(formatted)
        elif is_text_response(response):
            lines.append(response.text)
        else:
            lines.append(f"<{len(response.body)} bytes of binary data>")

    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Rich formatter
# ---------------------------------------------------------------------------


def print_response_rich(console: Console, response: ApiResponse) -> None:
    """Pretty-print a response using rich."""
    color = _status_color(response.status)

    status_line = Text()
    status_line.append(f"{response.http_version} ", style="bold dim")
    status_line.append(f"{response.status}", style=f"bold {color}")
    status_line.append(f" {response.status_text}", style=color)
    console.print(status_line)

    for key, value in response.headers.items():
        header_text = Text()
        header_text.append(f"{key}", style="dim cyan")
        header_text.append(": ", style="dim")
        header_text.append(value)
        console.print(header_text)

    console.print()

    if response.body:
        formatted = _pretty_json(response)
        if formatted is not None:
            console.print(Syntax(formatted, "json", theme="monokai"))
        elif is_text_response(response):
            console.print(response.text, markup=False)
        else:
            console.print(f"[dim]<{len(response.body)} bytes of binary data>[/dim]")


# ---------------------------------------------------------------------------
# Option parsing helpers
# ---------------------------------------------------------------------------


def parse_header(header: str) -> tuple[str, str]:
    """Parse a 'Key: Value' header string."""
    if ":" not in header:
        raise click.BadParameter(
            f"Invalid header format: '{header}'. Expected 'Key: Value'."
        )
    key, _, value = header.partition(":")
    return key.strip(), value.strip()


def parse_pair(pair: str) -> tuple[str, str]:
    """Parse a 'key=value' string."""
    if "=" not in pair:
        raise click.BadParameter(f"Invalid pair: '{pair}'. Expected 'key=value'.")
    key, _, value = pair.partition("=")
    return key, value


def _auth_from_options(
    auth: tuple[str, str] | None,
    bearer: str | None,
    api_key: tuple[str, str] | None,
    api_key_in_query: bool,
) -> Auth:
    if auth is not None:
        return BasicAuth(*auth)
    if bearer is not None:
        return BearerAuth(bearer)
    if api_key is not None:
        location = ApiKeyLocation.QUERY if api_key_in_query else ApiKeyLocation.HEADER
        return ApiKeyAuth(api_key[0], api_key[1], location)
    return NoAuth()


def _body_from_options(
    data: str | None, content_type: str | None, form: tuple[str, ...]
) -> Body:
    if form:
        return FormUrlEncodedBody(dict(parse_pair(f) for f in form))
    if data is not None:
        return RawBody(data, content_type)
    return NoBody()


# ---------------------------------------------------------------------------
# CLI command
# ---------------------------------------------------------------------------


@click.command(help="Send one HTTP request and inspect the annotated response.")
@click.argument("url", required=False)
@click.option("-m", "--method", default="GET", help="HTTP method.")
@click.option(
    "-H",
    "--header",
    "headers",
    multiple=True,
    help='Add a header, e.g. -H "Accept: application/json".',
)
@click.option(
    "-q", "--query", "query", multiple=True, help="Add a query parameter as key=value."
)
@click.option("-d", "--data", default=None, help="Raw request body.")
@click.option("--content-type", default=None, help="Content-Type of the raw body.")
@click.option(
    "-f", "--form", "form", multiple=True, help="Form field as key=value (urlencoded)."
)
@click.option("--auth", nargs=2, default=None, help="Username and password.", type=str)
@click.option("--bearer", default=None, help="Bearer token.")
@click.option("--api-key", nargs=2, default=None, help="API key name and value.", type=str)
@click.option(
    "--api-key-in-query", is_flag=True, default=False, help="Send the API key as a query parameter."
)
@click.option("--timeout", "timeout_ms", type=int, default=None, help="Timeout in milliseconds.")
@click.option("--no-follow", is_flag=True, default=False, help="Do not follow redirects.")
@click.option("--max-redirects", type=int, default=None, help="Maximum redirect hops.")
@click.option(
    "-k", "--insecure", is_flag=True, default=False, help="Skip TLS certificate verification."
)
@click.option("--proxy", default=None, help="Proxy URL.")
@click.option(
    "--timing", is_flag=True, default=False, help="Show request timing breakdown."
)
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the response as JSON.")
@click.option("--curl", "as_curl", is_flag=True, default=False, help="Print the curl equivalent and exit.")
@click.option("--from-curl", default=None, help="Build the request from a curl command.")
@click.option(
    "--no-color", is_flag=True, default=False, help="Disable colored output."
)
def main(
    url: str | None,
    method: str,
    headers: tuple[str, ...],
    query: tuple[str, ...],
    data: str | None,
    content_type: str | None,
    form: tuple[str, ...],
    auth: tuple[str, str] | None,
    bearer: str | None,
    api_key: tuple[str, str] | None,
    api_key_in_query: bool,
    timeout_ms: int | None,
    no_follow: bool,
    max_redirects: int | None,
    insecure: bool,
    proxy: str | None,
    timing: bool,
    as_json: bool,
    as_curl: bool,
    from_curl: str | None,
    no_color: bool,
) -> None:
    use_rich = HAS_RICH and not no_color and sys.stdout.isatty()

    if from_curl is not None:
        try:
            request = parse_curl(from_curl)
        except CurlParseError as exc:
            raise click.BadParameter(str(exc), param_hint="--from-curl")
        if url is not None:
            request = ApiRequest.from_dict({**request.to_dict(), "url": url})
    elif url is None:
        raise click.UsageError("Missing argument 'URL' (or pass --from-curl).")
    else:
        kwargs: dict[str, typing.Any] = {
            "url": url,
            "method": method.upper(),
            "headers": [parse_header(h) for h in headers],
            "query_params": dict(parse_pair(q) for q in query),
            "auth": _auth_from_options(auth, bearer, api_key, api_key_in_query),
            "body": _body_from_options(data, content_type, form),
            "follow_redirects": not no_follow,
            "verify_ssl": not insecure,
        }
        if timeout_ms is not None:
            kwargs["timeout_ms"] = timeout_ms
        if max_redirects is not None:
            kwargs["max_redirects"] = max_redirects
        if proxy is not None:
            kwargs["proxy"] = ProxyConfig(proxy)
        try:
            request = ApiRequest(**kwargs)
        except ValueError as exc:
            raise click.BadParameter(str(exc), param_hint="--method")

    try:
        if as_curl:
            click.echo(generate_curl(request))
            return
        response = execute(request)
    except InvalidUrl as exc:
        click.echo(f"{type(exc).__name__}: {exc}", err=True)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(response.to_dict(), indent=2))
    elif response.is_failure:
        if use_rich:
            console = Console(stderr=True)
            console.print(f"[bold red]{response.status_text}[/bold red]: {response.error}")
        else:
            click.echo(f"{response.status_text}: {response.error}", err=True)
    elif use_rich:
        console = Console()
        print_response_rich(console, response)
        if timing:
            console.print()
            console.print(f"[dim]⏱  {format_timing(response)}[/dim]")
            console.print(f"[dim]   {format_sizes(response)}[/dim]")
    else:
        click.echo(format_response_plain(response))
        if timing:
            click.echo()
            click.echo(format_timing(response))
            click.echo(format_sizes(response))

    if response.is_failure or response.status >= 300:
        sys.exit(1)
