from typing import Any

from loguru import logger


class LoggingNotifier:
    """Writes notifications to the log instead of delivering them."""

    async def notify_customer(
        self, appointment_id: str, kind: str, payload: dict[str, Any]
    ) -> None:
        logger.info(
            "Notification '{}' for appointment {} (audience={})",
            kind,
            appointment_id,
            payload.get("audience", "customer"),
        )

    async def close(self) -> None:
        return None
