# negotiation_service/client/poller.py
"""
Synchronization poller.

Keeps a local negotiation snapshot converged with the server by fetching it
on a fixed interval. Polling is a scoped resource: `start()` returns a
handle whose `release()` cancels the timer, and the handle (or
`poller.polling()`) can be used as an async context manager so the timer is
released on normal exit, error, or teardown alike.

Usage:
    poller = NegotiationPoller(api, negotiation_id, on_change=view_model.apply_snapshot)
    async with poller.polling():
        ...
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Callable, Optional

from negotiation_service.core.config import settings
from negotiation_service.core.exceptions import (
    MalformedPayloadError,
    NegotiationServiceError,
    TransportError,
)
from negotiation_service.schemas.negotiation import NegotiationRead
from negotiation_service.utils.log_diff import logs_equal

logger = logging.getLogger(__name__)


class PollingHandle:
    """Cancellation handle for one polling session."""

    def __init__(self, poller: "NegotiationPoller"):
        self._poller = poller
        self.released = False

    def release(self) -> None:
        """Stop the local timer. Idempotent; never touches server state."""
        if self.released:
            return
        self.released = True
        self._poller._cancel_timer()

    async def __aenter__(self) -> "PollingHandle":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()
        await self._poller.wait_stopped()


class NegotiationPoller:
    def __init__(
        self,
        api_client,
        negotiation_id: str,
        interval: float = None,
        on_change: Optional[Callable[[NegotiationRead], Any]] = None,
        on_status_change: Optional[Callable[[bool], Any]] = None,
    ):
        self.api_client = api_client
        self.negotiation_id = negotiation_id
        self.interval = interval if interval is not None else settings.POLL_INTERVAL_SECONDS
        self.on_change = on_change
        self.on_status_change = on_status_change

        self.snapshot: Optional[NegotiationRead] = None
        self.is_online = True
        self.visible = True

        self._task: Optional[asyncio.Task] = None
        self._handle: Optional[PollingHandle] = None
        self._wake = asyncio.Event()
        self._lock = asyncio.Lock()

    # ===========================================
    # Lifecycle
    # ===========================================

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> PollingHandle:
        """Begin polling. Starting an already running poller returns its handle."""
        if self.running:
            return self._handle
        self._wake.clear()
        self._task = asyncio.create_task(
            self._run(), name=f"negotiation-poller-{self.negotiation_id}"
        )
        self._handle = PollingHandle(self)
        logger.debug(f"Polling {self.negotiation_id} every {self.interval}s")
        return self._handle

    @asynccontextmanager
    async def polling(self):
        handle = self.start()
        try:
            yield handle
        finally:
            handle.release()
            await self.wait_stopped()

    def _cancel_timer(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            logger.debug(f"Stopped polling {self.negotiation_id}")

    async def wait_stopped(self) -> None:
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    def set_visible(self, visible: bool) -> None:
        """Hidden pollers skip their ticks; becoming visible polls immediately."""
        was_visible = self.visible
        self.visible = visible
        if visible and not was_visible:
            self._wake.set()

    async def _run(self) -> None:
        while True:
            if self.visible:
                await self.poll_now()
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()

    # ===========================================
    # Reconcile
    # ===========================================

    def _has_changed(self, negotiation: NegotiationRead) -> bool:
        current = self.snapshot
        if current is None:
            return True
        if not logs_equal(current.messages, negotiation.messages):
            return True
        return (
            current.status != negotiation.status
            or current.closed_reason != negotiation.closed_reason
            or current.purchase_order_id != negotiation.purchase_order_id
        )

    async def _notify(self, callback: Optional[Callable], *args) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
            if asyncio.iscoroutine(result):
                await result
        except Exception:
            logger.exception(f"Poller callback failed for {self.negotiation_id}")

    async def _set_online(self, online: bool) -> None:
        if self.is_online == online:
            return
        self.is_online = online
        logger.info(f"Negotiation {self.negotiation_id} sync is {'online' if online else 'offline'}")
        await self._notify(self.on_status_change, online)

    async def poll_now(self) -> Optional[NegotiationRead]:
        """Fetch once and reconcile. Returns the current snapshot."""
        async with self._lock:
            try:
                negotiation = await self.api_client.get_negotiation(self.negotiation_id)
            except TransportError as e:
                logger.warning(f"Poll of {self.negotiation_id} failed: {e.message}")
                await self._set_online(False)
                return self.snapshot
            except MalformedPayloadError as e:
                logger.warning(f"Dropping malformed update for {self.negotiation_id}: {e.message}")
                return self.snapshot
            except NegotiationServiceError as e:
                logger.warning(f"Poll of {self.negotiation_id} rejected ({e.error_code}): {e.message}")
                return self.snapshot

            await self._set_online(True)
            if self._has_changed(negotiation):
                self.snapshot = negotiation
                await self._notify(self.on_change, negotiation)
            return self.snapshot
