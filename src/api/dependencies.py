"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules and `main`.
"""

from __future__ import annotations

from functools import lru_cache
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from calls.manager import CallManager


@lru_cache(maxsize=1)
def _manager_factory() -> CallManager:
    # Lazy import so aiortc/ffmpeg are only loaded when a manager is needed.
    from calls.manager import CallManager
    from media.capture import DeviceMediaProvider
    from signaling.factory import build_signaling_store

    return CallManager.from_settings(build_signaling_store(), DeviceMediaProvider())


def get_call_manager() -> CallManager:
    return _manager_factory()
