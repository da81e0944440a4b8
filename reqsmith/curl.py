"""
Convert between request models and curl command lines.

* :func:`generate_curl`: render an :class:`~reqsmith.ApiRequest` as a
  copy-pasteable ``curl`` invocation
* :func:`parse_curl`: turn a ``curl`` command (e.g. "Copy as cURL" from
  browser dev tools) back into an :class:`~reqsmith.ApiRequest`

Examples
--------
>>> from reqsmith import ApiRequest, BearerAuth
>>> print(generate_curl(ApiRequest("https://api.example.com/items", auth=BearerAuth("t"))))
curl \\
  --request GET \\
  --url 'https://api.example.com/items' \\
  --header 'Authorization: Bearer t'
"""

from __future__ import annotations

import json
import shlex
from urllib.parse import unquote_plus

from ._builder import auth_headers, build_url, cookie_header
from ._exceptions import CurlParseError
from ._models import (
    ApiRequest,
    BasicAuth,
    BinaryBody,
    Body,
    Cookie,
    FormUrlEncodedBody,
    Method,
    MultipartBody,
    MultipartFile,
    MultipartText,
    NoBody,
    RawBody,
)
from ._urlparse import form_urlencode

_JOINER = " \\\n  "


def _quote(value: str) -> str:
    return "'" + value.replace("'", "'\\''") + "'"


def _body_args(body: Body) -> list[str]:
    if isinstance(body, NoBody):
        return []
    if isinstance(body, RawBody):
        args = []
        if body.content_type:
            args += ["--header", _quote(f"Content-Type: {body.content_type}")]
        return args + ["--data", _quote(body.content)]
    if isinstance(body, FormUrlEncodedBody):
        fields = [(k, v) for k, v in body.fields.items() if v]
        return [
            "--header",
            _quote("Content-Type: application/x-www-form-urlencoded"),
            "--data",
            _quote(form_urlencode(fields)),
        ]
    if isinstance(body, MultipartBody):
        args = []
        for part in body.fields:
            if isinstance(part.value, MultipartText):
                args += ["--form", _quote(f"{part.name}={part.value.text}")]
            elif isinstance(part.value, MultipartFile):
                args += ["--form", _quote(f"{part.name}=@{part.value.filename}")]
        return args
    if isinstance(body, BinaryBody):
        if body.filename is None:
            return []
        return ["--data-binary", _quote(f"@{body.filename}")]
    raise TypeError(f"Unsupported body variant: {body!r}")


def generate_curl(request: ApiRequest) -> str:
    """Render ``request`` as a multi-line curl command.

    Query parameters and query-string API keys are folded into ``--url``.
    Binary payloads are only referenced by file name, since their bytes
    cannot be pasted into a shell.
    """
    parts = ["curl", "--request", request.method.value]
    parts += ["--url", _quote(build_url(request.url, request.query_params, request.auth))]

    for name, value in [*request.headers.items(), *auth_headers(request.auth)]:
        if value:
            parts += ["--header", _quote(f"{name}: {value}")]
    if request.cookies:
        parts += ["--cookie", _quote(cookie_header(request.cookies))]

    parts += _body_args(request.body)

    if request.verify_ssl is False:
        parts.append("--insecure")
    if request.proxy is not None:
        parts += ["--proxy", _quote(request.proxy.url)]
        if request.proxy.credentials is not None:
            parts += ["--proxy-user", _quote(":".join(request.proxy.credentials))]

    # Flags and their values share a line.
    lines = [parts[0]]
    for token in parts[1:]:
        if token.startswith("--"):
            lines.append(token)
        else:
            lines[-1] += f" {token}"
    return _JOINER.join(lines)


# ---------------------------------------------------------------------------
# parse_curl
# ---------------------------------------------------------------------------


def _split_query(url: str) -> tuple[str, dict[str, str]]:
    base, sep, query = url.partition("?")
    if not sep:
        return url, {}
    fragment = ""
    if "#" in query:
        query, _, fragment = query.partition("#")
        base = f"{base}#{fragment}"
    params: dict[str, str] = {}
    for pair in query.split("&"):
        if not pair:
            continue
        key, _, value = pair.partition("=")
        if key:
            params[unquote_plus(key)] = unquote_plus(value)
    return base, params


def _parse_cookies(value: str) -> list[Cookie]:
    cookies = []
    for pair in value.split(";"):
        name, _, cookie_value = pair.strip().partition("=")
        if name:
            cookies.append(Cookie(name=name, value=cookie_value))
    return cookies


def _body_from_data(data: str, content_type: str) -> Body:
    lowered = content_type.lower()
    if "application/x-www-form-urlencoded" in lowered:
        fields: dict[str, str] = {}
        for pair in data.split("&"):
            key, _, value = pair.partition("=")
            if key:
                fields[unquote_plus(key)] = unquote_plus(value)
        return FormUrlEncodedBody(fields)
    if "application/json" in lowered:
        try:
            content = json.dumps(json.loads(data), indent=2)
        except (ValueError, RecursionError):
            content = data
        return RawBody(content, "application/json")
    return RawBody(data, content_type or None)


def parse_curl(command: str) -> ApiRequest:
    """Build an :class:`~reqsmith.ApiRequest` from a curl command line.

    Supports ``-X``, ``-H``, ``-d``/``--data*``, ``-b``, ``-u``, ``-k``,
    ``-L`` and ``-I``; other options are ignored. Data arguments are joined
    with ``&`` and promote a GET to POST.

    Raises :class:`~reqsmith.CurlParseError` when the command cannot be
    tokenized or names no URL.
    """
    try:
        tokens = shlex.split(command.replace("\\\n", " "))
    except ValueError as exc:
        raise CurlParseError(f"Cannot tokenize curl command: {exc}") from exc

    method = "GET"
    url: str | None = None
    headers: dict[str, str] = {}
    cookies: list[Cookie] = []
    data: list[str] = []
    extra: dict[str, object] = {}

    it = iter(tokens)
    for token in it:
        if token == "curl":
            continue
        if token in ("-X", "--request"):
            method = next(it, method).upper()
        elif token in ("-H", "--header"):
            name, sep, value = next(it, "").partition(":")
            if sep and name.strip():
                headers[name.strip()] = value.strip()
        elif token in ("-d", "--data", "--data-raw", "--data-binary", "--data-ascii"):
            payload = next(it, None)
            if payload is not None:
                data.append(payload)
                if method == "GET":
                    method = "POST"
        elif token in ("-b", "--cookie"):
            cookies.extend(_parse_cookies(next(it, "")))
        elif token in ("-u", "--user"):
            username, _, password = next(it, "").partition(":")
            extra["auth"] = BasicAuth(username, password)
        elif token in ("-k", "--insecure"):
            extra["verify_ssl"] = False
        elif token in ("-L", "--location"):
            extra["follow_redirects"] = True
        elif token in ("-I", "--head"):
            method = "HEAD"
        elif token == "--url":
            url = next(it, url)
        elif url is None and token.startswith("http"):
            url = token

    if url is None:
        # Accept scheme-less targets such as "example.com/path".
        url = next(
            (t for t in tokens if t != "curl" and not t.startswith("-") and "." in t),
            None,
        )
    if url is None:
        raise CurlParseError("No URL found in curl command")

    if method not in Method.__members__:
        raise CurlParseError(f"Unsupported HTTP method: {method!r}")

    url, query_params = _split_query(url)

    body: Body = NoBody()
    if data:
        content_type_key = next((k for k in headers if k.lower() == "content-type"), None)
        content_type = headers.pop(content_type_key) if content_type_key else ""
        body = _body_from_data("&".join(data), content_type)

    return ApiRequest(
        url=url,
        method=method,
        headers=headers,
        query_params=query_params,
        body=body,
        cookies=tuple(cookies),
        **extra,  # type: ignore[arg-type]
    )
