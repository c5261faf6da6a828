import base64

import pytest
from starlette.requests import Request

from image_service.auth import AuthGate

from conftest import basic_auth


@pytest.fixture
def gate():
    return AuthGate("admin", "s3cret:with:colons")


def _header(raw: bytes) -> str:
    return "Basic " + base64.b64encode(raw).decode("ascii")


def test_correct_credentials(gate):
    assert gate.check_header(basic_auth("admin", "s3cret:with:colons")["Authorization"])


def test_password_split_on_first_colon_only():
    gate = AuthGate("user", "a:b:c")
    assert gate.check_header(_header(b"user:a:b:c"))
    assert not gate.check_header(_header(b"user:a:b"))


def test_wrong_password(gate):
    assert not gate.check_header(_header(b"admin:nope"))


def test_wrong_username(gate):
    assert not gate.check_header(_header(b"root:s3cret:with:colons"))


@pytest.mark.parametrize(
    "header",
    [
        None,
        "",
        "Basic ",
        "Basic !!!not-base64!!!",
        "Basic YWRtaW4",  # битый padding
        "basic " + base64.b64encode(b"admin:s3cret:with:colons").decode(),
        "Bearer " + base64.b64encode(b"admin:s3cret:with:colons").decode(),
        _header(b"no-colon-here"),
        _header(b"\xff\xfe:\xfd"),
    ],
)
def test_malformed_headers_are_rejected(gate, header):
    assert gate.check_header(header) is False


def test_check_reads_authorization_header(gate):
    token = base64.b64encode(b"admin:s3cret:with:colons")
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/api/images",
        "headers": [(b"authorization", b"Basic " + token)],
    }
    assert gate.check(Request(scope))
    assert not gate.check(Request({**scope, "headers": []}))
