"""
Tests for enclave_attest/transport.py

Most tests replace requests.Session.request with a stub returning crafted
responses. The cookie tests use a loopback HTTP server so the real session
and cookie jar are exercised.
"""
from http.client import HTTPMessage
from http.server import BaseHTTPRequestHandler, HTTPServer
import json
import threading
from types import SimpleNamespace

import pytest
import requests
from requests.cookies import RequestsCookieJar, extract_cookies_to_jar

from enclave_attest.config import AttestationService, ServiceConfig
from enclave_attest.errors import AuthorizationFailure, MalformedResponse, TransportFailure
from enclave_attest.transport import Authorization, AuthorizationClient, HttpTransport

from fixtures.enclave import FakeTransport

URL = "https://enclave.example.test/v1/attestation/fc1e8f6d4b7a"


def _response(status_code=200, body=None, text=None, cookies=None):
    response = requests.Response()
    response.status_code = status_code
    response.url = URL
    response.headers["Content-Type"] = "application/json"
    response._content = (text if text is not None else json.dumps(body or {})).encode()
    for name, value in (cookies or {}).items():
        response.cookies.set(name, value)
    return response


@pytest.fixture
def stub_requests(monkeypatch):
    """Install a canned response (or exception) for requests.Session.request."""
    calls = []

    def install(result):
        def fake_request(session, method, url, **kwargs):
            calls.append({"method": method, "url": url, **kwargs})
            if isinstance(result, Exception):
                raise result
            return result
        monkeypatch.setattr(requests.Session, "request", fake_request)
        return calls

    return install


class TestHttpTransport:

    def test_decodes_json_and_captures_cookies(self, stub_requests):
        calls = stub_requests(_response(body={"ok": True}, cookies={"AWSALB": "replica-2"}))

        reply = HttpTransport(timeout=5).request("PUT", URL, json_body={"clientPublic": "AA=="}, auth=("u", "p"))

        assert reply.status_code == 200
        assert reply.body == {"ok": True}
        assert reply.cookies == {"AWSALB": "replica-2"}
        assert calls[0]["method"] == "PUT"
        assert calls[0]["json"] == {"clientPublic": "AA=="}
        assert calls[0]["auth"] == ("u", "p")
        assert calls[0]["timeout"] == 5

    @pytest.mark.parametrize("status", [401, 403])
    def test_rejected_credentials(self, stub_requests, status):
        stub_requests(_response(status_code=status))

        with pytest.raises(AuthorizationFailure) as exc_info:
            HttpTransport().request("PUT", URL)
        assert exc_info.value.details == {"status_code": status}
        assert exc_info.value.retryable

    @pytest.mark.parametrize("status", [404, 500, 503])
    def test_other_error_statuses(self, stub_requests, status):
        stub_requests(_response(status_code=status, text="unavailable"))

        with pytest.raises(TransportFailure):
            HttpTransport().request("PUT", URL)

    def test_non_json_body(self, stub_requests):
        stub_requests(_response(text="<html>gateway</html>"))

        with pytest.raises(MalformedResponse):
            HttpTransport().request("PUT", URL)

    @pytest.mark.parametrize("error", [
        requests.exceptions.Timeout("read timed out"),
        requests.exceptions.ConnectionError("connection refused"),
    ])
    def test_network_errors(self, stub_requests, error):
        stub_requests(error)

        with pytest.raises(TransportFailure) as exc_info:
            HttpTransport().request("PUT", URL)
        assert exc_info.value.retryable


class TestAuthorizationClient:

    def _client(self, auth_body, **service):
        transport = FakeTransport(lambda client_public: {}, auth_body=auth_body)
        config = ServiceConfig(service_url="https://service.example.test/", **service)
        return AuthorizationClient(config, transport=transport), transport

    def test_fetch(self):
        client, transport = self._client(
            {"username": "abc", "password": "def"}, username="+15555550100", password="pw"
        )

        auth = client.fetch(AttestationService.CONTACT_DISCOVERY)

        assert auth == Authorization("abc", "def")
        assert transport.requests[0]["url"] == "https://service.example.test/v1/directory/auth"
        assert transport.requests[0]["auth"] == ("+15555550100", "pw")

    def test_fetch_without_account(self):
        client, transport = self._client({"username": "abc", "password": "def"})

        client.fetch(AttestationService.KEY_BACKUP)

        assert transport.requests[0]["url"] == "https://service.example.test/v1/backup/auth"
        assert transport.requests[0]["auth"] is None

    @pytest.mark.parametrize("body", [
        {},
        {"username": "abc"},
        {"username": "", "password": "def"},
        {"username": "abc", "password": 7},
        ["abc", "def"],
    ])
    def test_invalid_credentials_rejected(self, body):
        client, _ = self._client(body)

        with pytest.raises(AuthorizationFailure):
            client.fetch(AttestationService.KEY_BACKUP)

    def test_non_json_reply_is_authorization_failure(self, stub_requests):
        stub_requests(_response(text="oops"))
        client = AuthorizationClient(ServiceConfig(service_url="https://service.example.test"))

        with pytest.raises(AuthorizationFailure):
            client.fetch(AttestationService.KEY_BACKUP)

    def test_password_not_in_repr(self):
        assert "def" not in repr(Authorization("abc", "def"))


class _CookieSettingHandler(BaseHTTPRequestHandler):

    def do_PUT(self):
        self.rfile.read(int(self.headers.get("Content-Length", 0)))
        body = json.dumps({"ok": True}).encode()
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Set-Cookie", "AWSALB=replica-9; Path=/")
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        pass


@pytest.fixture
def cookie_server(monkeypatch):
    monkeypatch.setenv("no_proxy", "127.0.0.1")
    monkeypatch.setenv("NO_PROXY", "127.0.0.1")
    server = HTTPServer(("127.0.0.1", 0), _CookieSettingHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_address[1]}/v1/attestation/fc1e8f6d4b7a"
    server.shutdown()
    server.server_close()


@pytest.fixture
def recorded_sessions(monkeypatch):
    """Keep every session HttpTransport creates so its jar can be inspected."""
    sessions = []
    new_session = HttpTransport._new_session

    def recording_new_session(self):
        session = new_session(self)
        sessions.append(session)
        return session

    monkeypatch.setattr(HttpTransport, "_new_session", recording_new_session)
    return sessions


class TestCookieHandling:

    def _set_cookie(self, jar):
        headers = HTTPMessage()
        headers["Set-Cookie"] = "AWSALB=replica-9; Path=/"
        raw = SimpleNamespace(_original_response=SimpleNamespace(msg=headers))
        extract_cookies_to_jar(jar, requests.Request("PUT", URL).prepare(), raw)

    def test_session_jar_refuses_every_cookie(self):
        default_jar = RequestsCookieJar()
        session = HttpTransport()._new_session()

        self._set_cookie(default_jar)
        self._set_cookie(session.cookies)

        assert default_jar.get_dict() == {"AWSALB": "replica-9"}
        assert len(session.cookies) == 0

    def test_cookies_captured_on_reply_not_in_session(self, cookie_server, recorded_sessions):
        reply = HttpTransport(timeout=5).request("PUT", cookie_server, json_body={"clientPublic": "AA=="})

        assert reply.body == {"ok": True}
        assert reply.cookies == {"AWSALB": "replica-9"}
        assert len(recorded_sessions) == 1
        assert len(recorded_sessions[0].cookies) == 0

    def test_each_request_uses_a_fresh_session(self, cookie_server, recorded_sessions):
        transport = HttpTransport(timeout=5)

        transport.request("PUT", cookie_server, json_body={})
        transport.request("PUT", cookie_server, json_body={})

        assert len(recorded_sessions) == 2
        assert recorded_sessions[0] is not recorded_sessions[1]
