"""Configuration management using Pydantic settings."""

from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from geo.reference import GeoBounds


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "DRONE-SIM"
    debug: bool = False
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Drone identity
    drone_id: str = "DRONE_001"

    # Backend endpoints + bearer credential
    ws_url: str = "ws://localhost:8080/drone-data"
    api_base_url: str = "http://localhost:3000/api"
    api_token: str = ""

    # Streaming
    streaming_method: Literal["persistent", "batch", "both"] = "persistent"
    connect_on_startup: bool = True
    autostart: bool = False

    # Timing (seconds)
    tick_interval: float = 0.1
    stream_interval: float = 0.5
    batch_interval: float = 1.0
    request_timeout: float = 5.0

    # Persistent channel reconnects: attempt N waits base_delay * N
    max_reconnect_attempts: int = 5
    reconnect_base_delay: float = 3.0

    # Batch channel retry queue
    retry_queue_size: int = 100
    retry_on_success: bool = True

    # Simulation
    history_size: int = 20
    random_seed: Optional[int] = None

    # Geo bounding box the 600x400 canvas maps onto
    geo_min_lat: float = 40.9000
    geo_max_lat: float = 41.2000
    geo_min_lng: float = 28.8000
    geo_max_lng: float = 29.2000

    @property
    def geo_bounds(self) -> GeoBounds:
        return GeoBounds(
            min_lat=self.geo_min_lat,
            max_lat=self.geo_max_lat,
            min_lng=self.geo_min_lng,
            max_lng=self.geo_max_lng,
        )


settings = Settings()
