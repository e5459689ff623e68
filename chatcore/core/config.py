import os
from datetime import timedelta
from pathlib import Path
from typing import Literal

from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    SECRET: str
    DATABASE_URL: str
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    LOG_LEVEL: str = "INFO"

    # Attachment storage
    ATTACHMENT_BACKEND: Literal["local", "s3"] = "local"
    ATTACHMENT_LOCAL_DIR: str = "./data/attachments"
    ATTACHMENT_PUBLIC_BASE_URL: str = "/attachments"
    ATTACHMENT_MAX_BYTES: int = 25 * 1024 * 1024
    S3_BUCKET: str | None = None
    S3_REGION: str | None = None

    # Presence and realtime
    PRESENCE_DEBOUNCE_SECONDS: float = 1.0
    PRESENCE_ONLINE_DELAY_SECONDS: float = 0.5
    PRESENCE_HEARTBEAT_SECONDS: int = 30
    PRESENCE_STALE_MARGIN_SECONDS: int = 30
    PRESENCE_REFRESH_SECONDS: int = 60
    REALTIME_RETRY_MAX_SECONDS: float = 30.0

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @classmethod
    def get_required_fields(cls) -> list[str]:
        """Get all required fields (those without default values)."""
        return [name for name, field in cls.model_fields.items() if field.is_required()]

    def __init__(self, **kwargs):
        try:
            # Try to initialize normally - pydantic_settings will try .env file first, then environment variables
            super().__init__(**kwargs)
        except ValidationError as e:
            # If validation fails, provide helpful error message
            env_file = Path(".env")
            required_fields = self.get_required_fields()

            # Check which required fields are missing
            missing_fields = []
            for field in required_fields:
                if not os.getenv(field) and field not in kwargs:
                    missing_fields.append(field)

            if missing_fields:
                fields_str = "\n".join(f"- {field}" for field in missing_fields)
                example_env = "\n".join(
                    f"{field}=your_{field.lower()}_here" for field in missing_fields
                )

                if not env_file.exists():
                    error_msg = (
                        f"\n\nError: Missing required environment variables!"
                        f"\nMissing variables: {fields_str}"
                        f"\n\nFor local development, create a .env file with:"
                        f"\n{example_env}"
                        f"\n\nFor production, set these as environment variables."
                    )
                else:
                    error_msg = (
                        f"\n\nError: Missing required environment variables!"
                        f"\nMissing variables: {fields_str}"
                        f"\n\nPlease add these to your .env file or set as environment variables."
                    )

                raise ValueError(error_msg) from e
            else:
                # Re-raise the original validation error if it's not about missing fields
                raise

    @property
    def presence_stale_after(self) -> timedelta:
        """How long an "online" presence row is trusted without a heartbeat."""
        return timedelta(
            seconds=self.PRESENCE_HEARTBEAT_SECONDS + self.PRESENCE_STALE_MARGIN_SECONDS
        )


settings = Settings()
