# evebridge/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Persistence
    DATABASE_PATH: str = "data/events.db"

    # NATS / JetStream
    NATS_URL: str = "nats://localhost:4222"
    NATS_CLIENT_NAME: str = "evebridge"
    NATS_CONNECT_TIMEOUT_SEC: float = 30.0
    NATS_RECONNECT_WAIT_SEC: float = 2.0
    NATS_MAX_RECONNECTS: int = 5

    # Stream eventi
    EVENTS_STREAM: str = "EVENTS"
    EVENTS_SUBJECT_PREFIX: str = "events"
    DEFAULT_EVENT_TYPE: str = "eve"
    EVENTS_MAX_AGE_SEC: int = 24 * 3600
    EVENTS_MAX_BYTES: int = 1024 * 1024 * 1024
    DUPLICATE_WINDOW_SEC: int = 3600

    # Stream ban/unban
    BAN_STREAM: str = "BAN_ACTIONS"
    BAN_MAX_AGE_SEC: int = 7 * 24 * 3600

    # Consumer durevole (uno per deployment)
    CONSUMER_DURABLE_NAME: str = "evebridge-events-consumer"
    CONSUMER_MAX_DELIVER: int = 5
    CONSUMER_ACK_WAIT_SEC: float = 30.0
    CONSUMER_NAK_DELAY_SEC: float = 1.0

    # Live viewers
    VIEWER_QUEUE_SIZE: int = 100
    SSE_KEEPALIVE_SEC: float = 15.0
    SHUTDOWN_GRACE_SEC: float = 5.0
    PUBLISH_FLUSH_TIMEOUT_SEC: float = 5.0
    PUBLISH_MAX_PENDING: int = 4000

    # GeoIP (opzionale: senza DB si degrada a "Unknown")
    GEOIP_DB_PATH: str = ""
    GEOIP_ASN_DB_PATH: str = ""

    # Ingest
    INGEST_TENANT_ID: int | None = None
    IOC_UNIQUE: bool = False

    LOG_LEVEL: str = "INFO"
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

settings = Settings()
