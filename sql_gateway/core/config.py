import json
from typing import Annotated, List

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    HOST: str = "0.0.0.0"
    HTTP_PORT: int = 3001
    HTTPS_PORT: int = 3443

    # Hex encoded AES-256 key (32 bytes) and CBC IV (16 bytes)
    ENCRYPTION_KEY: str = ""
    ENCRYPTION_IV: str = ""

    SSL_CERT_FILE: str = "certs/cert.pem"
    SSL_KEY_FILE: str = "certs/key.pem"

    CORS_ORIGINS: Annotated[List[str], NoDecode] = ["http://localhost:3000"]
    CORS_ORIGIN_REGEX: str = r"^https://[a-z0-9-]+\.vercel\.app$"

    DB_DIALECT: str = "hana+hdbcli"
    # Seconds, 0 disables the limit
    DB_CONNECT_TIMEOUT: float = 30.0
    DB_QUERY_TIMEOUT: float = 60.0

    LOG_LEVEL: str = "INFO"

    # This tells Pydantic to read from the .env file
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def split_origins(cls, value):
        # Accept either a JSON list or a plain comma separated list
        if isinstance(value, str):
            if value.lstrip().startswith("["):
                return json.loads(value)
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value


# Create a single instance of the settings to use everywhere
settings = Settings()