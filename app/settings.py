from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from geo.bbox import BoundingBox


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    db_path: Path = Field(
        default=Path("data/quake-monitor.db"), validation_alias="DB_PATH"
    )

    source_url: str = Field(
        default="https://earthquake.phivolcs.dost.gov.ph/",
        validation_alias="SOURCE_URL",
    )
    user_agent: str = Field(
        default="quake-monitor/0.1", validation_alias="USER_AGENT"
    )
    verify_tls: bool = Field(default=True, validation_alias="VERIFY_TLS")
    fetch_timeout_seconds: float = Field(
        default=8.0, validation_alias="FETCH_TIMEOUT_SECONDS"
    )

    source_utc_offset_hours: int = Field(
        default=8, validation_alias="SOURCE_UTC_OFFSET_HOURS"
    )

    bbox_min_lat: float = Field(default=4.5, validation_alias="BBOX_MIN_LAT")
    bbox_max_lat: float = Field(default=21.0, validation_alias="BBOX_MAX_LAT")
    bbox_min_lon: float = Field(default=116.0, validation_alias="BBOX_MIN_LON")
    bbox_max_lon: float = Field(default=127.0, validation_alias="BBOX_MAX_LON")

    retention_hours: int = Field(default=24, validation_alias="RETENTION_HOURS")
    max_events: int = Field(default=500, validation_alias="MAX_EVENTS")

    staleness_seconds: int = Field(
        default=300, validation_alias="STALENESS_SECONDS"
    )
    min_scrape_interval_seconds: int = Field(
        default=60, validation_alias="MIN_SCRAPE_INTERVAL_SECONDS"
    )

    scheduler_enabled: bool = Field(
        default=False, validation_alias="SCHEDULER_ENABLED"
    )
    scrape_interval_seconds: int = Field(
        default=300, validation_alias="SCRAPE_INTERVAL_SECONDS"
    )

    id_include_magnitude: bool = Field(
        default=False, validation_alias="ID_INCLUDE_MAGNITUDE"
    )

    log_format: str = Field(default="json", validation_alias="LOG_FORMAT")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    @property
    def bbox(self) -> BoundingBox:
        return BoundingBox(
            min_lat=self.bbox_min_lat,
            max_lat=self.bbox_max_lat,
            min_lon=self.bbox_min_lon,
            max_lon=self.bbox_max_lon,
        )
