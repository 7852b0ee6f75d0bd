# bakersdozen/config/supabase.py
"""
Supabase client singleton, accessor and lightweight health check.

This module intentionally:
  - Builds the supabase-py `AsyncClient` synchronously at import time (the
    constructor does no network I/O), so realtime channels and auth are
    available to the async services.
  - Never raises on missing/invalid configuration: the wrapper exposes
    `client = None` and the services fail on first use instead.
  - Avoids logging secrets; diagnostics return structural info only.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from supabase import AsyncClient  # supabase-py

from bakersdozen.config.settings import settings

logger = logging.getLogger(__name__)

# Hosted projects use https://<ref>.supabase.co; local stacks use http://localhost:54321
_SUPABASE_URL_RE = re.compile(r"^https?://[^\s/]+/?$")


class SupabaseClientNotInitialized(RuntimeError):
    """Raised when the supabase client is not available at runtime."""

    def __init__(self, msg: str):
        super().__init__(msg)


class SupabaseClient:
    """
    Lightweight wrapper around the supabase-py `AsyncClient`.

    Use:
        from bakersdozen.config.supabase import supabase_client
        client = supabase_client.client  # may be None if not configured
    """

    def __init__(
        self, url: Optional[str] = None, key: Optional[str] = None
    ) -> None:
        self._url = (url if url is not None else settings.supabase_url) or ""
        self._key = (key if key is not None else settings.supabase_anon_key) or ""
        self._client: Optional[AsyncClient] = None
        self._initialize_client()

    def _validate_url(self, url: str) -> bool:
        return bool(url and _SUPABASE_URL_RE.match(url))

    def _initialize_client(self) -> None:
        url = self._url.strip()
        if not url or not self._key:
            logger.error(
                "Supabase credentials not present: url=%r key_present=%s",
                url,
                bool(self._key),
            )
            return

        if not self._validate_url(url):
            logger.error(
                "Supabase URL format invalid: %r. Expected https://<project>.supabase.co",
                url,
            )
            return

        try:
            self._client = AsyncClient(url, self._key)
            logger.info("Initialized Supabase client for host=%s", urlparse(url).netloc)
        except Exception as exc:
            logger.exception("Failed to initialize Supabase client: %s", exc)
            self._client = None

    @property
    def client(self) -> Optional[AsyncClient]:
        """
        Return the underlying supabase client or None when not configured.

        Note: callers should not assume network connectivity; the connection
        monitor decides whether backend calls are attempted.
        """
        return self._client

    def require_client(self) -> AsyncClient:
        """Return the client or raise SupabaseClientNotInitialized."""
        if self._client is None:
            raise SupabaseClientNotInitialized(
                "Supabase client is not initialized. Check SUPABASE_URL / "
                "SUPABASE_ANON_KEY in the environment or .env file."
            )
        return self._client

    def diagnostics(self) -> Dict[str, Any]:
        """
        Return non-sensitive diagnostics about the client configuration.
        Safe to include in logs or in API responses.
        """
        diag: Dict[str, Any] = {
            "configured": bool(self._url and self._key),
            "client_present": self._client is not None,
            "host": None,
        }
        try:
            if self._url:
                diag["host"] = urlparse(self._url).netloc
        except ValueError:
            diag["host"] = "parse-error"
        return diag

    async def close(self) -> None:
        """Drop realtime channels, if any were opened."""
        if self._client is None:
            return
        try:
            await self._client.remove_all_channels()
        except Exception:
            logger.exception("Error while removing Supabase realtime channels")


# Single module-level instance for easy import
supabase_client = SupabaseClient()
