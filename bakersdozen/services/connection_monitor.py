# bakersdozen/services/connection_monitor.py
"""
Backend reachability monitor.

Two states, Online (initial) and Offline:
  - a successful probe query moves to Online, a failed one to Offline;
  - `set_offline()` mirrors a platform "offline" event;
  - `set_online()` mirrors a platform "online" event and re-probes;
  - a background task re-probes every `interval` seconds to catch silent
    failures the platform events miss.

`is_online` is a plain synchronous read and never blocks.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, List, Optional

from bakersdozen.config.settings import settings
from bakersdozen.config.supabase import supabase_client

logger = logging.getLogger(__name__)

StateListener = Callable[[bool], None]


class ConnectionMonitor:

    def __init__(
        self,
        supabase: Any = None,
        interval: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._supabase = supabase if supabase is not None else supabase_client
        self.interval = interval if interval is not None else settings.connection_check_interval
        self.timeout = timeout if timeout is not None else settings.request_timeout
        self._online = True
        self._listeners: List[StateListener] = []
        self._task: Optional[asyncio.Task] = None

    @property
    def is_online(self) -> bool:
        return self._online

    def _set_state(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        logger.info("Connection state changed: %s", "online" if online else "offline")
        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception:
                logger.exception("Connection state listener failed")

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def check_connection(self) -> bool:
        """
        Probe the backend with a cheap one-row query.
        Any exception, timeout or missing client counts as Offline.
        """
        client = getattr(self._supabase, "client", None)
        if client is None:
            logger.debug("Connection probe: no Supabase client configured")
            self._set_state(False)
            return False
        try:
            await asyncio.wait_for(
                client.table("users").select("id").limit(1).execute(),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Supabase connection probe timed out after %.1fs", self.timeout)
            self._set_state(False)
            return False
        except Exception as exc:
            logger.error("Supabase connection error: %s", exc)
            self._set_state(False)
            return False
        self._set_state(True)
        return True

    def set_offline(self) -> None:
        self._set_state(False)

    async def set_online(self) -> bool:
        return await self.check_connection()

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.check_connection()

    def start(self) -> None:
        """
        Probe every `interval` seconds, the first one after a full interval;
        callers wanting an immediate answer await `check_connection()` first.
        Requires a running event loop.
        """
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.get_running_loop().create_task(self._poll())
        logger.debug("Connection monitoring started (interval=%.1fs)", self.interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
