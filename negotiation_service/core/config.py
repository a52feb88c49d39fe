# negotiation_service/core/config.py

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Values are read from the environment provided by Docker Compose.
    model_config = SettingsConfigDict(extra="ignore")

    # The environment mode: 'local' or 'prod'
    ENV: str = "local"

    # --- Production URLs (for inside Docker) ---
    DATABASE_URL_PROD: str = ""
    KAFKA_BOOTSTRAP_SERVERS_PROD: str = ""

    # --- Local Development URLs (for running locally) ---
    DATABASE_URL_LOCAL: str = "sqlite:///./negotiations.db"
    KAFKA_BOOTSTRAP_SERVERS_LOCAL: str = "localhost:9092"

    # Other secrets
    JWT_SECRET: str = "change-me"

    # --- Domain events ---
    KAFKA_ENABLED: bool = False
    NEGOTIATION_EVENTS_TOPIC: str = "negotiation-events"

    # --- Negotiation client ---
    NEGOTIATION_API_BASE_URL: str = "http://localhost:8000/api/v1"
    POLL_INTERVAL_SECONDS: float = 3.0
    REQUEST_TIMEOUT_SECONDS: float = 10.0

    # --- Dynamic Properties ---
    @property
    def DATABASE_URL(self) -> str:
        return (
            self.DATABASE_URL_LOCAL if self.ENV == "local" else self.DATABASE_URL_PROD
        )

    @property
    def KAFKA_BOOTSTRAP_SERVERS(self) -> str:
        return (
            self.KAFKA_BOOTSTRAP_SERVERS_LOCAL
            if self.ENV == "local"
            else self.KAFKA_BOOTSTRAP_SERVERS_PROD
        )


# Create a single instance of the settings
settings = Settings()
