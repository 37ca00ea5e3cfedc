from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from pathlib import Path
from typing import List, Optional
from dotenv import load_dotenv
import logging

# Le fichier .env se trouve à la racine du dépôt
BASE_DIR = Path(__file__).resolve().parents[3]
ENV_FILE = BASE_DIR / ".env"
load_dotenv(ENV_FILE)

logger = logging.getLogger("config")

CLES_MASQUEES = ("PASSWORD", "SECRET", "API_KEY", "WEBHOOK")


class Settings(BaseSettings):
    DATABASE_URL: str
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(60, gt=0)

    # Géocodage et itinéraires (OpenRouteService)
    ORS_API_KEY: Optional[str] = None
    ORS_BASE_URL: str = "https://api.openrouteservice.org"

    # Webhooks IA : réponse aux emails et assistant
    AI_RESPONSE_WEBHOOK_URL: Optional[str] = None
    CHATBOT_WEBHOOK_URL: Optional[str] = None
    HTTP_TIMEOUT_SECONDS: float = Field(15.0, gt=0)

    NOTIFICATION_TTL_SECONDS: float = 7.0
    SEARCH_DEBOUNCE_MS: int = Field(300, ge=0)
    SEARCH_MIN_LENGTH: int = Field(2, ge=1)
    SEARCH_LIMIT: int = Field(5, ge=1)
    PAGE_SIZE_MAX: int = Field(100, ge=1)

    # Origines séparées par des virgules, "*" pour toutes
    CORS_ORIGINS: str = "*"

    model_config = SettingsConfigDict(
        env_file=ENV_FILE,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("DATABASE_URL", mode="before")
    def check_database_url(cls, v):
        if not v or not isinstance(v, str):
            raise ValueError("DATABASE_URL doit être défini et non vide.")
        if v.startswith("postgresql://"):
            # Le moteur asynchrone exige le pilote asyncpg
            v = v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    @field_validator("SECRET_KEY", mode="before")
    def check_secret_key(cls, v):
        if not v:
            raise ValueError("SECRET_KEY doit être défini.")
        if len(v) < 32:
            logger.warning("La SECRET_KEY est trop courte (< 32 caractères).")
        return v

    @field_validator("NOTIFICATION_TTL_SECONDS")
    def check_ttl(cls, v):
        if v <= 0:
            raise ValueError("NOTIFICATION_TTL_SECONDS doit être positif.")
        return v

    @field_validator("ORS_API_KEY", "AI_RESPONSE_WEBHOOK_URL", "CHATBOT_WEBHOOK_URL", mode="before")
    def vide_vers_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def cors_origins(self) -> List[str]:
        return [origine.strip() for origine in self.CORS_ORIGINS.split(",") if origine.strip()] or ["*"]

    @property
    def search_delay(self) -> float:
        return self.SEARCH_DEBOUNCE_MS / 1000

    def log_config(self):
        logger.info("Configuration chargée.")
        for key, value in self.model_dump().items():
            if value and any(secret in key.upper() for secret in CLES_MASQUEES):
                value = "*****"
            logger.info(f"{key}: {value}")


settings = Settings()
