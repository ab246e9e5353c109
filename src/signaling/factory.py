"""Factory returning the configured signaling store implementation."""

from __future__ import annotations

from config.settings import get_settings
from signaling.base import SignalingStore
from signaling.memory import InMemorySignalingStore


def build_signaling_store() -> SignalingStore:
    """Instantiate the configured signaling relay."""

    settings = get_settings()
    if settings.signaling_backend == "memory":
        return InMemorySignalingStore()
    if settings.signaling_backend == "firebase":
        from signaling.firebase import FirebaseSignalingStore

        return FirebaseSignalingStore()
    raise ValueError(f"Unsupported signaling_backend: {settings.signaling_backend}")
