import base64

import pytest

from fwdproxy.auth import is_authorized, parse_basic_auth, proxy_basic_auth
from fwdproxy.config import ProxyConfig
from fwdproxy.protocol import HTTPRequest

from support import basic


def make_request(*headers):
    return HTTPRequest(
        method="GET",
        target="http://example.com/",
        version="HTTP/1.1",
        headers=list(headers),
        client="127.0.0.1:5000",
    )


def encode(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


@pytest.mark.parametrize("scheme", ["Basic", "basic", "BASIC", "bAsIc"])
def test_parse_accepts_any_ascii_case(scheme):
    value = f"{scheme} {encode(b'Aladdin:open sesame')}"
    assert parse_basic_auth(value) == ("Aladdin", "open sesame", True)


def test_parse_known_value():
    assert parse_basic_auth("Basic QWxhZGRpbjpvcGVuIHNlc2FtZQ==") == (
        "Aladdin",
        "open sesame",
        True,
    )


def test_parse_splits_on_first_colon():
    value = "Basic " + encode(b"user:pa:ss:word")
    assert parse_basic_auth(value) == ("user", "pa:ss:word", True)


def test_parse_empty_username_and_password():
    assert parse_basic_auth("Basic " + encode(b":")) == ("", "", True)


def test_parse_keeps_whitespace_and_case():
    value = "Basic " + encode(b" Alice : Secret ")
    assert parse_basic_auth(value) == (" Alice ", " Secret ", True)


@pytest.mark.parametrize(
    "value",
    [
        "",
        "Basic",
        "Bearer " + "dXNlcjpwYXNz",
        "Basic dXNlcjpwYXNz!",
        "Basic " + "dXNlcnBhc3M=",  # "userpass", no colon
        "Basic " + "",
        "Basıc " + "dXNlcjpwYXNz",  # dotless i is not an ASCII fold of "i"
        "Basic  dXNlcjpwYXNz",
    ],
)
def test_parse_rejects_malformed(value):
    assert parse_basic_auth(value)[2] is False


def test_parse_non_utf8_credentials_round_trip_bytes():
    username, password, ok = parse_basic_auth("Basic " + encode(b"\xff\xfe:pw"))
    assert ok
    assert username.encode("utf-8", "surrogateescape") == b"\xff\xfe"
    assert password == "pw"


def test_proxy_basic_auth_reads_first_header():
    request = make_request(
        ("Proxy-Authorization", basic("alice", "secret")),
        ("Proxy-Authorization", basic("bob", "other")),
    )
    assert proxy_basic_auth(request) == ("alice", "secret", True)


def test_proxy_basic_auth_missing_header():
    assert proxy_basic_auth(make_request(("Host", "example.com"))) == ("", "", False)


def test_auth_disabled_allows_everything():
    config = ProxyConfig()
    assert is_authorized(make_request(), config)
    assert is_authorized(make_request(("Proxy-Authorization", "garbage")), config)


CONFIGURED = ProxyConfig(username="alice", password="secret")


def test_matching_credentials_are_authorized():
    request = make_request(("proxy-authorization", basic("alice", "secret")))
    assert is_authorized(request, CONFIGURED)


@pytest.mark.parametrize(
    "headers",
    [
        [],
        [("Proxy-Authorization", basic("alice", "wrong"))],
        [("Proxy-Authorization", basic("mallory", "secret"))],
        [("Proxy-Authorization", basic("Alice", "secret"))],
        [("Proxy-Authorization", basic("alice", "secret "))],
        [("Proxy-Authorization", "Basic not-base64")],
        [("Authorization", basic("alice", "secret"))],
    ],
)
def test_mismatched_credentials_are_rejected(headers):
    assert not is_authorized(make_request(*headers), CONFIGURED)
