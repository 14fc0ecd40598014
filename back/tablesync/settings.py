from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


_PROJECT_ROOT = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    """
    Table sync configuration.

    Like the POS API, this reads `config.env` (non-dot env file) from the
    repository root first, then `.env`, then the same names relative to CWD.
    """

    model_config = SettingsConfigDict(
        env_file=(
            str(_PROJECT_ROOT / "config.env"),
            str(_PROJECT_ROOT / ".env"),
            "config.env",
            ".env",
        ),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Upstream order API
    api_url: str = Field(default="http://localhost:5000/api/v1", validation_alias="API_URL")
    api_token: str = Field(default="", validation_alias="API_TOKEN")
    request_timeout_seconds: float = Field(default=10.0, validation_alias="REQUEST_TIMEOUT_SECONDS")
    order_fetch_limit: int = Field(default=200, validation_alias="ORDER_FETCH_LIMIT")
    active_order_fetch_limit: int = Field(default=1000, validation_alias="ACTIVE_ORDER_FETCH_LIMIT")
    restaurant_id: int | None = Field(default=None, validation_alias="RESTAURANT_ID")

    # Push channel
    push_transport: str = Field(default="websocket", validation_alias="PUSH_TRANSPORT")  # websocket | redis
    ws_url: str = Field(default="ws://localhost:8021", validation_alias="WS_URL")
    redis_url: str = Field(default="redis://localhost:6379", validation_alias="REDIS_URL")
    reconnect_delay_seconds: float = Field(default=5.0, validation_alias="RECONNECT_DELAY_SECONDS")
    tenant_id: int | None = Field(default=None, validation_alias="TENANT_ID")

    # Table context (customer kiosk). When unset the service runs in staff context.
    table_id: int | None = Field(default=None, validation_alias="TABLE_ID")
    table_token: str | None = Field(default=None, validation_alias="TABLE_TOKEN")

    # Staff JWT validation
    secret_key: str = Field(default="CHANGE_THIS_IN_PRODUCTION", validation_alias="SECRET_KEY")
    algorithm: str = Field(default="HS256", validation_alias="ALGORITHM")

    # Quantity editing
    debounce_ms: int = Field(default=400, validation_alias="DEBOUNCE_MS")
    reconcile_timeout_seconds: float = Field(default=20.0, validation_alias="RECONCILE_TIMEOUT_SECONDS")
    staff_customer_name: str = Field(default="Admin", validation_alias="STAFF_CUSTOMER_NAME")
    staff_customer_phone: str = Field(default="0000000000", validation_alias="STAFF_CUSTOMER_PHONE")

    # CORS configuration
    cors_origins: str = Field(
        default="http://localhost:3000",
        validation_alias="CORS_ORIGINS"
    )

    @property
    def staff_context(self) -> bool:
        return self.table_id is None

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000


settings = Settings()
