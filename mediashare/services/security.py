"""Shared-secret session gate for protected mode."""

from __future__ import annotations

import logging
import secrets
import threading
from typing import Mapping, Optional, Set


LOGGER = logging.getLogger(__name__)

SESSION_COOKIE = "session_code"
SESSION_QUERY_PARAMETER = "session_code"
TOKEN_BYTES = 16


def _mask(token: str) -> str:
    if len(token) <= 4:
        return "*" * len(token)
    return f"{token[:2]}…{token[-2:]}"


def parse_cookie_token(cookie_header: Optional[str]) -> Optional[str]:
    """Return the ``session_code`` value from a raw ``Cookie`` header, if any."""

    if not cookie_header:
        return None
    for pair in cookie_header.split(";"):
        name, separator, value = pair.strip().partition("=")
        if separator and name == SESSION_COOKIE and value:
            return value
    return None


class SessionGate:
    """Hold the set of authorized session tokens.

    Tokens carry no identity, scope or expiry: any request presenting a token
    from the set is trusted. The set lives in memory and is emptied whenever
    the server stops.
    """

    def __init__(self, *, secure_mode: bool = False) -> None:
        self.secure_mode = secure_mode
        self._tokens: Set[str] = set()
        self._lock = threading.Lock()

    def authorize(self, token: str) -> None:
        token = token.strip()
        if not token:
            raise ValueError("Session tokens must not be empty")
        with self._lock:
            added = token not in self._tokens
            self._tokens.add(token)
        if added:
            LOGGER.info("Authorized session token %s", _mask(token))

    def issue_token(self) -> str:
        """Generate, authorize and return a fresh pairing token."""

        token = secrets.token_urlsafe(TOKEN_BYTES)
        self.authorize(token)
        return token

    def validate_token(self, token: Optional[str]) -> bool:
        if not token:
            return False
        with self._lock:
            return token in self._tokens

    @staticmethod
    def extract_token(
        cookie_header: Optional[str], query: Optional[Mapping[str, str]] = None
    ) -> Optional[str]:
        """Return the presented token; the cookie takes priority over the query string."""

        token = parse_cookie_token(cookie_header)
        if token is not None:
            return token
        if query is not None:
            value = query.get(SESSION_QUERY_PARAMETER)
            if value:
                return value
        return None

    def validate(
        self, headers: Mapping[str, str], query: Optional[Mapping[str, str]] = None
    ) -> bool:
        cookie_header = headers.get("cookie") or headers.get("Cookie")
        return self.validate_token(self.extract_token(cookie_header, query))

    def clear(self) -> int:
        with self._lock:
            count = len(self._tokens)
            self._tokens.clear()
        if count:
            LOGGER.info("Cleared %s authorized session tokens", count)
        return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)


__all__ = [
    "SESSION_COOKIE",
    "SESSION_QUERY_PARAMETER",
    "SessionGate",
    "parse_cookie_token",
]
