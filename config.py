from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    NODE_ENV: str = "development"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_HOST: str = "localhost"
    POSTGRES_DATABASE: str = "academy"
    POSTGRES_PORT: str = "5432"  # Default port for PostgreSQL

    # Explicit URL wins over the POSTGRES_* parts (e.g. sqlite:///./academy.db)
    DATABASE_URL: str = ""

    # Store operations
    STORE_TIMEOUT_SECONDS: float = 10.0
    POOL_SIZE: int = 20
    POOL_MAX_OVERFLOW: int = 30

    # Password reset
    PASSWORD_RESET_TOKEN_TTL_MINUTES: int = 30
    # Only the newest versions are checked on redeem; older tokens are unknown
    PASSWORD_RESET_SCAN_DEPTH: int = 5
    PASSWORD_MAX_LENGTH: int = 64

    # Subscriptions and access policy
    SUBSCRIPTION_SWEEP_INTERVAL_SECONDS: int = 300
    SUBSCRIPTIONS_GRANT_CATALOGUE: bool = True
    ENTITLEMENT_CACHE_TTL_SECONDS: int = 30

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    LOG_DIR: str = "logs"

    # Shared secret for service-to-service calls (payment webhook relay, auth service)
    BACKEND_API_KEY: str = "your-secure-api-key-here"

    # CORS configuration - comma-separated list of allowed origins
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:8000"

    @property
    def POSTGRES_URL(self):
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DATABASE}"
        )

    @property
    def database_url(self) -> str:
        return self.DATABASE_URL or self.POSTGRES_URL

    model_config = SettingsConfigDict(env_file=".env.development", extra="ignore")


settings = Settings()
