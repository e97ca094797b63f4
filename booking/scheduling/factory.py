from collections.abc import Callable, Iterable, Mapping
from typing import Any

from loguru import logger

from booking.config import AppConfig, NotifierAdapter, NotifierConfig
from booking.domain.models import Staff
from booking.scheduling.adapters.console import LoggingNotifier
from booking.scheduling.adapters.datetime_helpers import resolve_timezone
from booking.scheduling.adapters.memory import (
    InMemoryAppointmentRepository,
    InMemoryCustomerDirectory,
    InMemoryStaffDirectory,
)
from booking.scheduling.adapters.webhook import WebhookNotifier
from booking.scheduling.lifecycle import Clock
from booking.scheduling.ports import NotifierProtocol
from booking.scheduling.service import AppointmentService


def _build_log(config: NotifierConfig) -> NotifierProtocol:
    return LoggingNotifier()


def _build_webhook(config: NotifierConfig) -> NotifierProtocol:
    if not config.webhook_url:
        raise ValueError("NOTIFIER_WEBHOOK_URL must be set for the webhook notifier")
    return WebhookNotifier(
        config.webhook_url,
        token=config.webhook_token,
        timeout=config.webhook_timeout,
    )


_BUILDERS: dict[NotifierAdapter, Callable[[NotifierConfig], NotifierProtocol]] = {
    NotifierAdapter.LOG: _build_log,
    NotifierAdapter.WEBHOOK: _build_webhook,
}


def build_notifier(config: NotifierConfig) -> NotifierProtocol:
    """Build the notifier selected in config."""
    logger.info("Building notifier with adapter: {}", config.adapter.value)
    return _BUILDERS[config.adapter](config)


def build_appointment_service(
    config: AppConfig,
    *,
    staff: Iterable[Staff] = (),
    customer_records: Iterable[Mapping[str, Any]] = (),
    notifier: NotifierProtocol | None = None,
    clock: Clock | None = None,
) -> AppointmentService:
    """Build an in-memory appointment service seeded with a roster and customers."""
    tz = resolve_timezone(config.office_timezone)
    return AppointmentService(
        InMemoryAppointmentRepository(tz),
        InMemoryStaffDirectory(staff),
        InMemoryCustomerDirectory(customer_records),
        notifier or build_notifier(config.notifier),
        slot_times=config.slot_times,
        tz=tz,
        clock=clock,
        max_retries=config.max_write_retries,
        page_size=config.default_page_size,
    )
