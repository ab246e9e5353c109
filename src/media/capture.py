"""Local capture of microphone and camera."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import av.error
from aiortc.contrib.media import MediaPlayer

from calls.errors import MediaAccessDenied
from calls.records import CallType
from config.settings import get_settings
from media.stream import LocalStream, SwitchableTrack

LOGGER = logging.getLogger(__name__)


class MediaProvider(ABC):
    """Acquires the local media stream for a call."""

    @abstractmethod
    async def acquire(self, call_type: CallType) -> LocalStream:
        """Return a stream with audio (and video for video calls) or raise MediaAccessDenied."""


class DeviceMediaProvider(MediaProvider):
    """Opens capture devices through aiortc's ffmpeg-backed `MediaPlayer`."""

    def __init__(self) -> None:
        settings = get_settings()
        self._audio_device = settings.audio_device
        self._audio_format = settings.audio_format
        self._video_device = settings.video_device
        self._video_format = settings.video_format
        self._video_options = {
            "video_size": f"{settings.video_width}x{settings.video_height}",
            "framerate": str(settings.video_framerate),
        }

    async def acquire(self, call_type: CallType) -> LocalStream:
        LOGGER.info("Initializing media for %s", call_type)
        players: list[MediaPlayer] = []
        try:
            microphone = MediaPlayer(self._audio_device, format=self._audio_format)
            players.append(microphone)
            if microphone.audio is None:
                raise MediaAccessDenied(f"No audio track on {self._audio_device}")
            tracks = [SwitchableTrack(microphone.audio)]

            if call_type == "video":
                camera = MediaPlayer(self._video_device, format=self._video_format, options=self._video_options)
                players.append(camera)
                if camera.video is None:
                    raise MediaAccessDenied(f"No video track on {self._video_device}")
                tracks.append(SwitchableTrack(camera.video))
        except (OSError, av.error.FFmpegError) as exc:
            LOGGER.error("Error accessing media devices: %s", exc)
            _release(players)
            raise MediaAccessDenied() from exc
        except MediaAccessDenied:
            _release(players)
            raise

        LOGGER.info("Media stream obtained with %d track(s)", len(tracks))
        return LocalStream(tracks=tracks)


def _release(players: list[MediaPlayer]) -> None:
    for player in players:
        for track in (player.audio, player.video):
            if track is not None:
                track.stop()
