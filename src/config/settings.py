"""Environment-driven configuration for the call client."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ICE_SERVERS = [
    "stun:stun.l.google.com:19302",
    "stun:stun1.l.google.com:19302",
    "stun:stun2.l.google.com:19302",
    "stun:stun3.l.google.com:19302",
    "stun:stun4.l.google.com:19302",
]


class Settings(BaseSettings):
    """Settings read from the environment and `.env`."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")

    # Identity of the user this client process acts for
    local_user_id: str = Field(default="local-user", description="User id of the signed-in party.")

    # Signaling relay
    signaling_backend: Literal["memory", "firebase"] = Field(
        default="memory",
        description="Store used to exchange session records between peers.",
    )
    firebase_database_url: str | None = Field(
        default=None,
        description="Realtime Database root, e.g. https://<project>-default-rtdb.firebaseio.com",
    )
    firebase_auth_token: str | None = Field(
        default=None,
        description="ID token or database secret appended as the `auth` query parameter.",
    )
    signaling_timeout_seconds: float = Field(default=10.0, gt=0.0)
    calls_path: str = Field(default="calls")
    users_path: str = Field(default="users")

    # Peer connection
    ice_servers: list[str] = Field(default_factory=lambda: list(DEFAULT_ICE_SERVERS))
    ice_candidate_pool_size: int = Field(default=10, ge=0)

    # Incoming calls older than this are ignored
    invitation_freshness_seconds: int = Field(default=300, gt=0)

    # Local capture (aiortc MediaPlayer arguments)
    audio_device: str = Field(default="default")
    audio_format: str = Field(default="pulse")
    video_device: str = Field(default="/dev/video0")
    video_format: str = Field(default="v4l2")
    video_width: int = Field(default=1280)
    video_height: int = Field(default=720)
    video_framerate: int = Field(default=30)

    @field_validator("calls_path", "users_path")
    @classmethod
    def strip_slashes(cls, value: str) -> str:
        value = value.strip("/")
        if not value:
            raise ValueError("Store paths may not be empty.")
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
