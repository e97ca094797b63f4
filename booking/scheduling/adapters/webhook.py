from typing import Any

import httpx
from loguru import logger

from booking.domain.exceptions import NotificationError


class WebhookNotifier:
    """Posts notifications as JSON to an HTTP endpoint."""

    def __init__(self, url: str, *, token: str = "", timeout: float = 10.0) -> None:
        self._url = url
        self._token = token or None
        self._client = httpx.AsyncClient(timeout=timeout)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def notify_customer(
        self, appointment_id: str, kind: str, payload: dict[str, Any]
    ) -> None:
        try:
            resp = await self._client.post(
                self._url,
                headers=self._headers(),
                json={"appointment_id": appointment_id, "kind": kind, "payload": payload},
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise NotificationError(
                f"Notification webhook rejected '{kind}' with status "
                f"{exc.response.status_code}",
                appointment_id=appointment_id,
            ) from exc
        except Exception as exc:
            raise NotificationError(
                f"Notification webhook request failed: {exc}", appointment_id=appointment_id
            ) from exc
        logger.debug("Webhook accepted '{}' for appointment {}", kind, appointment_id)

    async def health_check(self) -> bool:
        try:
            resp = await self._client.head(self._url, headers=self._headers())
        except Exception:
            logger.warning("Notification webhook unreachable")
            return False
        return resp.status_code < 500

    async def close(self) -> None:
        await self._client.aclose()
