from __future__ import annotations

import base64
import binascii
import logging

from fastapi import Depends, Request

from .config import Settings, get_settings
from .errors import AuthError

logger = logging.getLogger(__name__)

SCHEME = "Basic "


class AuthGate:
    """Проверка одной общей пары логин/пароль (HTTP Basic)."""

    def __init__(self, username: str, password: str):
        self._username = username
        self._password = password

    @classmethod
    def from_settings(cls, s: Settings) -> "AuthGate":
        return cls(s.auth_username, s.auth_password)

    def check_header(self, header: str | None) -> bool:
        if not header or not header.startswith(SCHEME):
            return False

        try:
            raw = base64.b64decode(header[len(SCHEME):], validate=True)
            credentials = raw.decode("utf-8")
        except (binascii.Error, ValueError):
            return False

        # пароль может содержать ':'
        parts = credentials.split(":", 1)
        if len(parts) != 2:
            return False

        # обычное сравнение строк, без constant-time
        return parts[0] == self._username and parts[1] == self._password

    def check(self, request: Request) -> bool:
        return self.check_header(request.headers.get("Authorization"))


def require_auth(request: Request, s: Settings = Depends(get_settings)) -> None:
    if not AuthGate.from_settings(s).check(request):
        logger.warning("Rejected credentials for %s %s", request.method, request.url.path)
        raise AuthError()
