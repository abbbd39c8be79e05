from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8098

    # Database
    DATABASE_PATH: str = "ecoswap.db"
    DATABASE_ECHO: bool = False

    # Ledger
    COMMISSION_RATE_PERCENT: int = 10
    LEDGER_CAS_RETRIES: int = 3
    WALLET_SIGNUP_BONUS: int = 0

    # Identity
    AUTH_JWT_SECRET: str = ""
    AUTH_JWT_ALGORITHM: str = "HS256"
    AUTH_USER_HEADERS: str = "x-user-id"
    AUTH_TOKEN_HEADERS: str = "authorization,x-auth-token"

    # Collaborators
    VALUATION_URL: str = ""
    VALUATION_TIMEOUT_SECONDS: float = 10.0
    UPLOAD_DIR: str = "static/uploads"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


settings = Settings()
