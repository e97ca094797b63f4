import datetime as dt
from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SLOT_TIMES: tuple[dt.time, ...] = (
    dt.time(9, 0),
    dt.time(10, 0),
    dt.time(11, 0),
    dt.time(13, 0),
    dt.time(14, 0),
    dt.time(15, 0),
    dt.time(16, 0),
    dt.time(17, 0),
)


class NotifierAdapter(Enum):
    LOG = "log"
    WEBHOOK = "webhook"


class NotifierConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="NOTIFIER_", env_file=".env", extra="ignore")

    adapter: NotifierAdapter = NotifierAdapter.LOG
    webhook_url: str = ""
    webhook_token: str = ""
    webhook_timeout: float = 10.0


class AppConfig(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    office_timezone: str = "Asia/Manila"
    slot_times: tuple[dt.time, ...] = DEFAULT_SLOT_TIMES
    max_write_retries: int = Field(default=3, ge=1)
    default_page_size: int = Field(default=10, ge=1, le=100)
    notifier: NotifierConfig = Field(default_factory=lambda: NotifierConfig())
