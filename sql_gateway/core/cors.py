import logging
import re
from typing import Iterable, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class OriginPolicy:
    """Browser origins allowed to call the gateway."""

    def __init__(self, origins: Iterable[str], origin_regex: Optional[str] = None):
        self.origins = frozenset(origin.rstrip("/") for origin in origins)
        self.origin_regex = origin_regex or None
        self._pattern = re.compile(origin_regex) if origin_regex else None

    def is_allowed(self, origin: Optional[str]) -> bool:
        # Non-browser clients (curl, server to server) send no Origin
        if not origin:
            return True
        if origin in self.origins:
            return True
        return bool(self._pattern and self._pattern.fullmatch(origin))


def origin_guard(policy: OriginPolicy):
    """HTTP middleware that stops disallowed origins before any endpoint runs."""

    async def guard(request: Request, call_next):
        origin = request.headers.get("origin")
        if not policy.is_allowed(origin):
            logger.warning(f"Rejected request from origin {origin}")
            return JSONResponse(
                status_code=status.HTTP_403_FORBIDDEN,
                content={
                    "error": {
                        "type": "CORS Error",
                        "message": f"Origin {origin} is not allowed",
                        "details": {},
                    }
                },
            )
        return await call_next(request)

    return guard
