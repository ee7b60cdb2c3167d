from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

import httpx

from barberq.services.exceptions import DownstreamServiceError

logger = logging.getLogger(__name__)

DedupeKey = Tuple[str, Optional[str], str]


class NotificationClient:
    """Async client for the notification collaborator.

    In mock mode notifications land in an in-memory outbox. The outbox keeps
    the collaborator's promise of at most one delivery per user, booking and
    change inside the dedupe window. Only the newest ``outbox_limit`` messages
    are kept until someone drains them.
    """

    def __init__(
        self,
        base_url: str | None,
        *,
        timeout: float = 10.0,
        use_mock_data: bool = True,
        token: str | None = None,
        dedupe_window_seconds: float = 300.0,
        outbox_limit: int = 500,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._base_url = str(base_url).rstrip("/") if base_url else None
        self._timeout = timeout
        self.use_mock_data = use_mock_data or not self._base_url
        self._headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if token:
            self._headers["Authorization"] = f"Bearer {token}"
        self._dedupe_window = dedupe_window_seconds
        self._clock = clock
        self._delivered: Dict[DedupeKey, float] = {}
        self.outbox: Deque[Dict[str, Any]] = deque(maxlen=outbox_limit)
        self._client: Optional[httpx.AsyncClient] = None
        if not self.use_mock_data and self._base_url:
            self._client = self._build_client()

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers=self._headers,
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self.use_mock_data or not self._base_url:
            raise RuntimeError("HTTP client requested while running in mock mode")
        if self._client is None:
            self._client = self._build_client()
        return self._client

    def drain_outbox(self) -> List[Dict[str, Any]]:
        """Return the queued messages and empty the outbox."""
        drained = list(self.outbox)
        self.outbox.clear()
        return drained

    @staticmethod
    def dedupe_key(user_id: str, template_kind: str, payload: Dict[str, Any]) -> DedupeKey:
        booking_id = payload.get("booking_id")
        change = payload.get("change", "")
        return (user_id, str(booking_id) if booking_id is not None else None, f"{template_kind}:{change}")

    def _is_duplicate(self, key: DedupeKey) -> bool:
        now = self._clock()
        self._delivered = {
            existing: sent_at
            for existing, sent_at in self._delivered.items()
            if now - sent_at < self._dedupe_window
        }
        if key in self._delivered:
            return True
        self._delivered[key] = now
        return False

    async def notify(self, user_id: str, template_kind: str, payload: Dict[str, Any]) -> bool:
        """Send one notification. Returns ``False`` when it was suppressed as a repeat."""
        if self.use_mock_data:
            await self.simulate_latency()
            if self._is_duplicate(self.dedupe_key(user_id, template_kind, payload)):
                logger.debug("Suppressed duplicate %s notification for %s", template_kind, user_id)
                return False
            self.outbox.append(
                {"user_id": user_id, "template_kind": template_kind, "payload": dict(payload)}
            )
            logger.info("Queued %s notification for %s", template_kind, user_id)
            return True

        client = await self._ensure_client()
        body = {"user_id": user_id, "template_kind": template_kind, "payload": payload}
        try:
            response = await client.post("/notifications/send", json=body)
            response.raise_for_status()
            return True
        except httpx.HTTPStatusError as exc:
            logger.exception("Notification service returned error %s", exc.response.status_code)
            raise DownstreamServiceError(
                "Notification service returned an error response",
                status_code=exc.response.status_code,
                cause=exc,
            ) from exc
        except httpx.RequestError as exc:
            logger.exception("Unable to reach notification service: %s", exc)
            raise DownstreamServiceError(
                "Unable to reach notification service", status_code=None, cause=exc
            ) from exc

    async def simulate_latency(self) -> None:
        """Allow services to await for latency even when mocking responses."""

        await asyncio.sleep(0)
