"""
Credential supply for the Notion API
"""

import os
from typing import Optional, Protocol

import structlog

from .sync.errors import AuthExpiredError
from .utils.error_handling import ErrorContext

logger = structlog.get_logger(__name__)


class TokenProvider(Protocol):
    """Supplies a bearer credential per call"""

    async def get_access_token(self) -> str:
        ...


class StaticTokenProvider:
    """Token provider for an internal integration secret

    A missing secret surfaces as AuthExpiredError so callers can
    ask the user to reconnect.
    """

    def __init__(self, token: Optional[str] = None):
        self._token = token if token is not None else os.getenv("NOTION_API_KEY")
        if not self._token:
            logger.warning("No Notion API key configured")

    async def get_access_token(self) -> str:
        if not self._token:
            raise AuthExpiredError(context=ErrorContext("get_access_token"))
        return self._token

    @property
    def has_token(self) -> bool:
        return bool(self._token)
