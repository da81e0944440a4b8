import time
import typing

import httpx
import pytest

import reqsmith
from reqsmith import ApiRequest, FailureKind, HTTPXTransport, ResponseRenderer
from reqsmith._transports.default import PhaseRecorder, _server_addr


def mock_execute(
    handler: typing.Callable[[httpx.Request], httpx.Response], request: ApiRequest
) -> reqsmith.ApiResponse:
    transport = HTTPXTransport(transport=httpx.MockTransport(handler))
    return reqsmith.execute(request, transport=transport)


# ---------------------------------------------------------------------------
# Phase recording
# ---------------------------------------------------------------------------


class FakeNetworkStream:
    def __init__(self, addr):
        self.addr = addr

    def get_extra_info(self, info):
        return self.addr if info == "server_addr" else None


def test_phase_recorder_maps_trace_events():
    recorder = PhaseRecorder()
    recorder("connection.connect_tcp.started", {})
    recorder(
        "connection.connect_tcp.complete",
        {"return_value": FakeNetworkStream(("10.0.0.1", 443))},
    )
    recorder("connection.start_tls.complete", {})
    recorder("http11.send_request_headers.started", {})
    recorder("http11.receive_response_headers.complete", {})
    total = recorder.elapsed_ms()

    phases = recorder.phases(total)
    assert 0 <= phases.dns <= phases.connect <= phases.tls
    assert phases.tls <= phases.pretransfer <= phases.firstbyte <= phases.total
    assert phases.total == total
    assert recorder.remote_addr == "10.0.0.1"


def test_phase_recorder_keeps_first_connection():
    recorder = PhaseRecorder()
    recorder("connection.connect_tcp.started", {})
    first = recorder.marks["connect_tcp.started"]
    time.sleep(0.01)
    recorder("connection.connect_tcp.started", {})
    assert recorder.marks["connect_tcp.started"] == first


def test_phase_recorder_without_events():
    phases = PhaseRecorder().phases(5.0)
    assert phases == reqsmith.PhaseTimestamps(0.0, 0.0, 0.0, 0.0, 0.0, 5.0)


def test_server_addr_is_the_peer_ip():
    assert _server_addr(FakeNetworkStream(("::1", 8080, 0, 0))) == "::1"
    assert _server_addr(FakeNetworkStream(("10.0.0.1", 443))) == "10.0.0.1"
    assert _server_addr(FakeNetworkStream(None)) is None
    assert _server_addr(None) is None


# ---------------------------------------------------------------------------
# HTTPXTransport with a mocked network
# ---------------------------------------------------------------------------


def test_request_reaches_the_wire_as_built():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["content"] = request.content
        return httpx.Response(200, text="ok")

    request = ApiRequest(
        "https://example.com/submit",
        method="POST",
        query_params={"v": "2"},
        headers={"X-Trace": "abc"},
        auth=reqsmith.BearerAuth("t0k3n"),
        cookies=[reqsmith.Cookie("sid", "42")],
        body=reqsmith.FormUrlEncodedBody({"name": "a b"}),
    )
    response = mock_execute(handler, request)

    assert response.status == 200
    assert seen["method"] == "POST"
    assert seen["url"] == "https://example.com/submit?v=2"
    assert seen["headers"]["x-trace"] == "abc"
    assert seen["headers"]["authorization"] == "Bearer t0k3n"
    assert seen["headers"]["cookie"] == "sid=42"
    assert seen["headers"]["content-type"] == "application/x-www-form-urlencoded"
    assert seen["content"] == b"name=a+b"


@pytest.mark.parametrize(
    "request_kwargs,header,value",
    [
        ({"headers": {"X-Name": "José"}}, "x-name", "José"),
        ({"auth": reqsmith.BearerAuth("tök")}, "authorization", "Bearer tök"),
        (
            {"auth": reqsmith.ApiKeyAuth("X-Key", "ключ", reqsmith.ApiKeyLocation.HEADER)},
            "x-key",
            "ключ",
        ),
        ({"cookies": [reqsmith.Cookie("name", "Zoë")]}, "cookie", "name=Zoë"),
    ],
)
def test_non_ascii_header_values_are_sent_as_utf8(request_kwargs, header, value):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update((name.lower(), raw) for name, raw in request.headers.raw)
        return httpx.Response(200)

    response = mock_execute(handler, ApiRequest("https://example.com/", **request_kwargs))
    assert response.status == 200
    assert seen[header.encode("ascii")] == value.encode("utf-8")


def test_response_is_analyzed():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            201,
            headers=[
                ("Content-Type", "application/json"),
                ("Set-Cookie", "a=1; Path=/"),
                ("Set-Cookie", "b=2; Secure"),
            ],
            content=b'{"created": true}',
        )

    response = mock_execute(handler, ApiRequest("https://example.com/", method="POST"))

    assert response.status == 201
    assert response.status_text == "Created"
    assert response.http_version == "HTTP/1.1"
    assert response.headers["Content-Type"] == "application/json"
    assert response.headers["Set-Cookie"] == "a=1; Path=/, b=2; Secure"
    assert response.cookies == (
        reqsmith.Cookie("a", "1", path="/"),
        reqsmith.Cookie("b", "2", secure=True),
    )
    assert response.available_renderers == (ResponseRenderer.RAW, ResponseRenderer.JSON)
    assert response.json() == {"created": True}
    assert response.response_size.body_bytes == 17
    assert response.response_size.total_bytes == (
        response.response_size.headers_bytes + 17
    )


def test_deeply_nested_body_does_not_break_analysis():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"[" * 100000)

    response = mock_execute(handler, ApiRequest("https://example.com/"))
    assert response.status == 200
    assert response.available_renderers == (ResponseRenderer.RAW,)


def test_head_suppresses_body():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"should not be kept")

    response = mock_execute(handler, ApiRequest("https://example.com/", method="HEAD"))
    assert response.status == 200
    assert response.body == b""


def test_mocked_exchange_has_no_connection_phases():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200)

    response = mock_execute(handler, ApiRequest("https://example.com/"))
    timing = response.timing
    assert timing.dns_lookup_ms == 0.0
    assert timing.tcp_handshake_ms == 0.0
    assert timing.tls_handshake_ms == 0.0
    assert timing.content_download_ms == pytest.approx(timing.total_ms)
    assert response.remote_addr is None


def test_redirects_are_followed():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/start":
            return httpx.Response(302, headers={"Location": "/next"})
        return httpx.Response(200, headers={"X-Final": "yes"}, text="done")

    response = mock_execute(handler, ApiRequest("https://example.com/start"))
    assert response.status == 200
    assert response.headers["X-Final"] == "yes"
    assert response.text == "done"
    assert response.redirects == ()


def test_redirects_are_not_followed_when_disabled():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(302, headers={"Location": "/next"})

    response = mock_execute(
        handler, ApiRequest("https://example.com/start", follow_redirects=False)
    )
    assert response.status == 302
    assert response.status_text == "Found"
    assert response.headers["Location"] == "/next"


def test_redirect_cap():
    def handler(request: httpx.Request) -> httpx.Response:
        hop = int(request.url.params.get("hop", "0"))
        return httpx.Response(302, headers={"Location": f"/?hop={hop + 1}"})

    response = mock_execute(handler, ApiRequest("https://example.com/", max_redirects=2))
    assert response.status == 0
    assert response.error is not None
    assert response.error.startswith("Too many redirects. ")


@pytest.mark.parametrize(
    "exc,prefix",
    [
        (httpx.ConnectError("[Errno 111] Connection refused"), "Could not connect. "),
        (httpx.ConnectTimeout("timed out"), "Operation timed out. "),
        (httpx.ReadError("connection reset by peer"), "Failed to transfer the message body. "),
        (
            httpx.ConnectError("[Errno -2] Name or service not known"),
            "Could not resolve host. ",
        ),
    ],
)
def test_transport_errors_become_failures(exc, prefix):
    def handler(request: httpx.Request) -> httpx.Response:
        raise exc

    response = mock_execute(handler, ApiRequest("https://example.com/"))
    assert response.status == 0
    assert response.status_text == "Request Failed"
    assert response.error == prefix + str(exc)


def test_undecodable_content():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, headers={"Content-Encoding": "gzip"}, content=b"definitely not gzip"
        )

    response = mock_execute(handler, ApiRequest("https://example.com/"))
    assert response.status == 0
    assert response.error is not None
    assert response.error.startswith("Failed to decode the response content. ")


class SlowStream(httpx.SyncByteStream):
    def __iter__(self) -> typing.Iterator[bytes]:
        for _ in range(10):
            time.sleep(0.05)
            yield b"chunk"


def test_deadline_applies_to_the_whole_exchange():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, stream=SlowStream())

    response = mock_execute(handler, ApiRequest("https://example.com/", timeout_ms=120))
    assert response.status == 0
    assert response.error is not None
    assert response.error.startswith("Operation timed out. ")
    assert "bytes received" in response.error


def test_deadline_covers_a_slow_empty_response():
    def handler(request: httpx.Request) -> httpx.Response:
        time.sleep(0.3)
        return httpx.Response(204)

    response = mock_execute(handler, ApiRequest("https://example.com/", timeout_ms=100))
    assert response.status == 0
    assert response.error is not None
    assert response.error.startswith("Operation timed out. ")
    assert "with 0 bytes received" in response.error


def test_zero_timeout_disables_the_deadline():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, stream=SlowStream())

    response = mock_execute(handler, ApiRequest("https://example.com/", timeout_ms=0))
    assert response.status == 200
    assert response.body == b"chunk" * 10


def test_invalid_proxy_is_a_connect_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("the request must not be sent")

    request = ApiRequest("https://example.com/", proxy=reqsmith.ProxyConfig("ftp://proxy"))
    response = mock_execute(handler, request)
    assert response.status == 0
    assert response.error is not None
    assert response.error.startswith("Could not connect. Invalid proxy configuration")


def test_quic_hint_falls_back_to_tcp():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200)

    response = mock_execute(
        handler, ApiRequest("https://example.com/", protocol=reqsmith.HttpProtocol.QUIC)
    )
    assert response.status == 200
    assert response.protocol_used == "HTTP/1.1"


# ---------------------------------------------------------------------------
# HTTPXTransport against a live server
# ---------------------------------------------------------------------------


def test_get(server):
    response = reqsmith.execute(ApiRequest(server.url))
    assert response.status == 200
    assert response.status_text == "OK"
    assert response.text == "Hello, world!"
    assert response.http_version == "HTTP/1.1"
    assert response.protocol_used == "HTTP/1.1"
    assert response.detected_content_type == "text/plain"
    assert response.remote_addr == "127.0.0.1"
    assert response.timing.total_ms > 0
    assert response.timing.tls_handshake_ms == 0.0


def test_timing_fields_are_consistent(server):
    timing = reqsmith.execute(ApiRequest(server.url)).timing
    fields = vars(timing)
    assert all(value >= 0 for value in fields.values())
    assert all(value <= timing.total_ms for value in fields.values())


def test_headers_auth_and_cookies_are_sent(server):
    request = ApiRequest(
        server.url + "echo_headers",
        headers={"X-Custom": "yes"},
        auth=reqsmith.ApiKeyAuth("X-API-Key", "secret"),
        cookies=[reqsmith.Cookie("a", "1"), reqsmith.Cookie("b", "2")],
    )
    echoed = reqsmith.execute(request).json()
    assert echoed["x-custom"] == "yes"
    assert echoed["x-api-key"] == "secret"
    assert echoed["cookie"] == "a=1; b=2"


def test_query_params_are_sent(server):
    request = ApiRequest(
        server.url + "echo_query?x=1",
        query_params={"y": "a b"},
        auth=reqsmith.ApiKeyAuth("key", "k", reqsmith.ApiKeyLocation.QUERY),
    )
    assert reqsmith.execute(request).text == "x=1&y=a+b&key=k"


def test_multipart_body_is_sent(server):
    body = reqsmith.MultipartBody(
        [
            reqsmith.MultipartField("field", reqsmith.MultipartText("value")),
            reqsmith.MultipartField(
                "file", reqsmith.MultipartFile(b"contents", "a.txt", "text/plain")
            ),
        ]
    )
    response = reqsmith.execute(
        ApiRequest(server.url + "echo_body", method="POST", body=body)
    )
    content_type = response.headers["content-type"]
    assert content_type.startswith("multipart/form-data; boundary=----ReqsmithFormBoundary")
    assert b'name="field"\r\n\r\nvalue\r\n' in response.body
    assert b'filename="a.txt"\r\nContent-Type: text/plain\r\n\r\ncontents\r\n' in response.body
    assert response.request_size.body_bytes == len(response.body)


def test_set_cookies(server):
    response = reqsmith.execute(ApiRequest(server.url + "set_cookies"))
    assert len(response.cookies) == 2
    assert response.cookies[0].name == "session"
    assert response.cookies[0].http_only is True
    assert response.cookies[1].domain == "example.com"
    assert "session=abc" in response.headers["set-cookie"]
    assert "theme=dark" in response.headers["set-cookie"]


def test_renderers(server):
    json_response = reqsmith.execute(ApiRequest(server.url + "json"))
    assert json_response.available_renderers == (
        ResponseRenderer.RAW,
        ResponseRenderer.JSON,
    )
    html_response = reqsmith.execute(ApiRequest(server.url + "html"))
    assert html_response.available_renderers == (
        ResponseRenderer.RAW,
        ResponseRenderer.HTML,
        ResponseRenderer.HTML_PREVIEW,
    )


def test_live_redirects(server):
    followed = reqsmith.execute(ApiRequest(server.url + "redirect_301"))
    assert followed.status == 200
    assert followed.text == "Hello, world!"

    not_followed = reqsmith.execute(
        ApiRequest(server.url + "redirect_301", follow_redirects=False)
    )
    assert not_followed.status == 301
    assert not_followed.status_text == "Moved Permanently"

    capped = reqsmith.execute(ApiRequest(server.url + "redirect_301", max_redirects=0))
    assert capped.status == 0
    assert capped.error is not None
    assert capped.error.startswith("Too many redirects. ")


def test_redirect_loop(server):
    response = reqsmith.execute(ApiRequest(server.url + "redirect_loop"))
    assert response.status == 0
    assert response.error is not None
    assert response.error.startswith("Too many redirects. ")


def test_status_codes(server):
    response = reqsmith.execute(ApiRequest(server.url + "status/404"))
    assert response.status == 404
    assert response.status_text == "Not Found"
    assert response.error is None


def test_live_head(server):
    response = reqsmith.execute(ApiRequest(server.url, method="HEAD"))
    assert response.status == 200
    assert response.body == b""


def test_connection_refused():
    response = reqsmith.execute(ApiRequest("http://127.0.0.1:1/"))
    assert response.status == 0
    assert response.error is not None
    assert response.error.startswith("Could not connect. ")


@pytest.mark.network
def test_unresolvable_host():
    response = reqsmith.execute(ApiRequest("http://host.that.does.not.exist.invalid/"))
    assert response.status == 0
    assert response.error is not None
    assert response.error.startswith("Could not resolve host. ")


# ---------------------------------------------------------------------------
# HTTPXRTransport
# ---------------------------------------------------------------------------


def test_httpxr_transport_reports_wall_clock_only(server):
    pytest.importorskip("httpxr")
    transport = reqsmith.HTTPXRTransport()
    assert transport.supports_phase_timing is False

    response = reqsmith.execute(ApiRequest(server.url), transport=transport)
    assert response.status == 200
    assert response.text == "Hello, world!"
    assert response.timing.total_ms > 0
    assert response.timing.dns_lookup_ms == 0.0
    assert response.timing.ttfb_ms == 0.0
    assert response.remote_addr is None


def test_httpxr_transport_failure():
    pytest.importorskip("httpxr")
    response = reqsmith.execute(
        ApiRequest("http://127.0.0.1:1/"), transport=reqsmith.HTTPXRTransport()
    )
    assert response.status == 0
    assert response.error is not None
    assert response.error.startswith("Could not connect. ")
