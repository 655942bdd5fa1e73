import json

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str

    REDIS_URL: str | None = None

    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    API_PREFIX: str = ""
    PROJECT_NAME: str = "EduFund Chat API"

    BACKEND_CORS_ORIGINS: str = '["http://localhost:5173","http://localhost:8080"]'

    # The single support account; every identity with this e-mail is the admin
    ADMIN_EMAIL: str = "support@edufund.example"

    # "remote" asks the identity provider, "jwt" checks the signature locally,
    # "insecure_decode" trusts the payload (never allowed in production)
    AUTH_MODE: str = "remote"
    IDENTITY_PROVIDER_URL: str = ""
    IDENTITY_PROVIDER_API_KEY: str = ""
    IDENTITY_VERIFY_TIMEOUT_SECONDS: float = 5.0

    SECRET_KEY: str = ""
    ALGORITHM: str = "HS256"
    JWT_AUDIENCE: str | None = None

    # "sql" for the database, "memory" for local development without one
    CHAT_STORE: str = "sql"
    # "local" keeps fan-out in this process, "redis" shares it through pub/sub
    CHAT_FANOUT_BACKEND: str = "local"

    MESSAGE_MAX_LENGTH: int = 5000

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"

    @model_validator(mode="after")
    def _check_auth_mode(self) -> "Settings":
        if self.AUTH_MODE not in ("remote", "jwt", "insecure_decode"):
            raise ValueError(f"Unknown AUTH_MODE: {self.AUTH_MODE}")
        if self.AUTH_MODE == "insecure_decode" and self.is_production:
            raise ValueError("AUTH_MODE=insecure_decode is not allowed in production")
        if self.AUTH_MODE == "jwt" and not self.SECRET_KEY:
            raise ValueError("AUTH_MODE=jwt requires SECRET_KEY")
        if self.CHAT_FANOUT_BACKEND == "redis" and not self.REDIS_URL:
            raise ValueError("CHAT_FANOUT_BACKEND=redis requires REDIS_URL")
        return self

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def cors_origins(self) -> list[str]:
        try:
            parsed: list[str] = json.loads(self.BACKEND_CORS_ORIGINS)
            return parsed
        except json.JSONDecodeError:
            return ["http://localhost:5173"]


settings = Settings()
