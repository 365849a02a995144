from pathlib import Path
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings
from typing import Optional
from functools import lru_cache

SUPPORTED_PROVIDERS = ("googledrive", "dropbox")


class Settings(BaseSettings):
    """
    Centralized application configuration with type validation.
    Automatically reads variables from the environment.
    """

    # --- General Settings ---
    STORAGE_PROVIDER: str = "googledrive"  # "googledrive" or "dropbox"
    LOG_LEVEL: str = "INFO"

    # --- Auth server (proxies refresh token exchanges) ---
    PRODUCTION: bool = True
    AUTH_SERVER_URL: str = "https://syncmarx.com"
    LOCAL_AUTH_SERVER_URL: str = "http://localhost:1800"
    HTTP_TIMEOUT: Optional[float] = None  # seconds, None waits forever

    # --- Remote layout and payload ---
    APP_FOLDER_NAME: str = "syncmarx"
    PAYLOAD_ENCRYPTION_KEY: str = Field(
        "syncmarx", validation_alias="PAYLOAD_ENCRYPTION_KEY"
    )
    COMPRESSION: bool = False
    PROFILE_NAME: Optional[str] = None

    # --- Google Drive Settings (optional) ---
    GDRIVE_CLIENT_SECRETS_FILE: Optional[str] = None
    GDRIVE_REVOKE_ON_DEAUTHORIZE: bool = False

    # --- Dropbox Settings (optional) ---
    DROPBOX_APP_KEY: Optional[str] = None

    # --- Local state kept by the CLI ---
    CREDENTIALS_FILE: str = ".syncmarx.credentials.json"

    # --- Constants and Computed Paths ---
    BASE_DIR: Path = Path.cwd()

    @model_validator(mode="before")
    def validate_storage_provider(cls, values):
        provider = values.get("STORAGE_PROVIDER")
        if not provider:
            return values

        if provider not in SUPPORTED_PROVIDERS:
            raise ValueError(
                f"Invalid STORAGE_PROVIDER. Must be one of: {', '.join(SUPPORTED_PROVIDERS)}."
            )

        if provider == "dropbox":
            app_key = values.get("DROPBOX_APP_KEY")
            if not app_key or not str(app_key).strip():
                raise ValueError(
                    "DROPBOX_APP_KEY is required when STORAGE_PROVIDER is 'dropbox'"
                )

        return values

    @property
    def AUTH_BASE_URL(self) -> str:
        base = self.AUTH_SERVER_URL if self.PRODUCTION else self.LOCAL_AUTH_SERVER_URL
        return base.rstrip("/")

    def refresh_token_url(self, provider: str) -> str:
        """URL of the auth server endpoint that exchanges a refresh token."""
        return f"{self.AUTH_BASE_URL}/auth/{provider}/refreshtoken"

    @property
    def CREDENTIALS_PATH(self) -> Path:
        return self.BASE_DIR / self.CREDENTIALS_FILE

    @property
    def LOG_FILE(self) -> Path:
        return self.BASE_DIR / "syncmarx.log"


@lru_cache()
def get_settings() -> Settings:
    """
    Returns a cached instance of the application settings.
    The first call to this function will initialize the settings.
    """
    return Settings()
