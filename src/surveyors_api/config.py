from functools import lru_cache
from typing import List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Runtime configuration for the API process.

    Values come from the environment or a .env file; names are matched
    case-insensitively (JWT_SECRET -> jwt_secret). A value that does not
    parse fails at startup with the offending variable named.
    """

    # Auth
    jwt_secret: str = Field(..., min_length=1)
    jwt_algorithm: str = "HS256"
    jwt_expires_in: str = Field(default="24h", description="Token lifetime, e.g. 24h, 30m, 7d or seconds")
    jwt_issuer: str = "cls-app"
    jwt_audience: str = "cls-users"
    bcrypt_rounds: int = Field(default=10, ge=4, le=31)

    # Application
    environment: str = Field(default="development", validation_alias=AliasChoices("environment", "APP_ENV"))
    log_level: str = "INFO"
    frontend_url: str = Field(default="http://localhost:4200", description="Comma-separated CORS origins")

    # Database
    postgres_url: Optional[str] = None
    postgres_user: Optional[str] = None
    postgres_password: Optional[str] = None
    postgres_db: Optional[str] = None
    postgres_port: Optional[str] = None
    postgres_host: str = "localhost"
    db_pool_min: int = Field(default=1, ge=1)
    db_pool_max: int = Field(default=10, ge=1)

    # Outbound mail
    smtp_host: Optional[str] = None
    smtp_port: int = Field(default=587, ge=1, le=65535)
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_starttls: bool = True
    mail_from: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def allowed_origins(self) -> List[str]:
        return [o.strip() for o in self.frontend_url.split(",") if o.strip()]

    def database_dsn(self) -> str:
        """
        Build the libpq DSN.

        POSTGRES_URL wins when present; otherwise the URL is assembled from
        POSTGRES_USER, POSTGRES_PASSWORD, POSTGRES_DB, POSTGRES_PORT and
        POSTGRES_HOST (default localhost).
        """
        if self.postgres_url:
            return self.postgres_url

        parts = {
            "POSTGRES_USER": self.postgres_user,
            "POSTGRES_PASSWORD": self.postgres_password,
            "POSTGRES_DB": self.postgres_db,
            "POSTGRES_PORT": self.postgres_port,
        }
        missing = [name for name, value in parts.items() if not value]
        if missing:
            raise RuntimeError(
                f"Missing required environment variable '{missing[0]}'. "
                "Set POSTGRES_URL or the POSTGRES_* parts in the process environment or the service .env file."
            )
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )


# PUBLIC_INTERFACE
def load_settings(load_env: bool = True) -> Settings:
    """Read settings from the environment (and .env when load_env is set)."""
    return Settings(_env_file=".env" if load_env else None)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, loaded once."""
    return load_settings()
