"""
Edge route gate.

Runs before every other handler. Public paths pass straight through; any other
path needs the IdP session cookie to be present, otherwise the request is sent to
the sign-in page. The cookie is never decoded here: real authorization happens on
each data access.
"""
from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Iterable, Mapping

from fastapi import FastAPI, Request
from fastapi.responses import RedirectResponse

logger = logging.getLogger(__name__)

_REGEX_CHARS = set("()[]{}*+?|^$\\")


def _compile(pattern: str) -> re.Pattern[str]:
    """Entries without regex syntax are exact paths; a literal dot stays literal."""
    if _REGEX_CHARS.isdisjoint(pattern):
        return re.compile(re.escape(pattern))
    return re.compile(pattern)


class GateDecision(str, Enum):
    ALLOW = "allow"
    REDIRECT = "redirect"


class RouteGate:
    def __init__(
        self,
        public_patterns: Iterable[str],
        *,
        session_cookie: str,
        sign_in_path: str = "/auth",
    ) -> None:
        self.public_patterns = [_compile(pattern) for pattern in public_patterns]
        self.session_cookie = session_cookie
        self.sign_in_path = sign_in_path

    def is_public(self, path: str) -> bool:
        return any(pattern.fullmatch(path) for pattern in self.public_patterns)

    def has_session(self, cookies: Mapping[str, str]) -> bool:
        try:
            return self.session_cookie in cookies
        except Exception:
            logger.warning("Unable to inspect request cookies; treating as signed out", exc_info=True)
            return False

    def evaluate(self, path: str, cookies: Mapping[str, str]) -> GateDecision:
        if self.is_public(path):
            return GateDecision.ALLOW
        if self.has_session(cookies):
            return GateDecision.ALLOW
        return GateDecision.REDIRECT


def register_route_gate(app: FastAPI, gate: RouteGate) -> None:
    @app.middleware("http")
    async def route_gate_middleware(request: Request, call_next):
        # Allow CORS preflight to flow through CORSMiddleware unchanged
        if request.method.upper() == "OPTIONS":
            return await call_next(request)

        if gate.evaluate(request.url.path, request.cookies) is GateDecision.REDIRECT:
            logger.debug("No session cookie for %s; redirecting to %s", request.url.path, gate.sign_in_path)
            target = request.url.replace(path=gate.sign_in_path, query="", fragment="")
            return RedirectResponse(url=str(target), status_code=307)

        return await call_next(request)
