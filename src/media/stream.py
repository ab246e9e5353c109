from __future__ import annotations

import logging
from dataclasses import dataclass, field

import av
import numpy as np
from aiortc import MediaStreamTrack

LOGGER = logging.getLogger(__name__)


def silence_like(frame: av.AudioFrame) -> av.AudioFrame:
    samples = np.zeros_like(frame.to_ndarray())
    silent = av.AudioFrame.from_ndarray(samples, format=frame.format.name, layout=frame.layout.name)
    silent.sample_rate = frame.sample_rate
    silent.pts = frame.pts
    if frame.time_base is not None:
        silent.time_base = frame.time_base
    return silent


def black_like(frame: av.VideoFrame) -> av.VideoFrame:
    pixels = np.zeros((frame.height, frame.width, 3), dtype=np.uint8)
    black = av.VideoFrame.from_ndarray(pixels, format="bgr24")
    black.pts = frame.pts
    if frame.time_base is not None:
        black.time_base = frame.time_base
    return black


class SwitchableTrack(MediaStreamTrack):
    """Wraps a capture track so it can be muted without renegotiating.

    While disabled the track keeps its timing but sends silence (audio) or black
    frames (video), which is what a browser does for `track.enabled = false`.
    """

    def __init__(self, source: MediaStreamTrack) -> None:
        super().__init__()
        self.kind = source.kind
        self.enabled = True
        self._source = source

    async def recv(self):
        frame = await self._source.recv()
        if self.enabled:
            return frame
        if self.kind == "audio":
            return silence_like(frame)
        return black_like(frame)

    def stop(self) -> None:
        super().stop()
        self._source.stop()


@dataclass
class LocalStream:
    """Tracks captured for one call."""

    tracks: list[SwitchableTrack] = field(default_factory=list)

    @property
    def audio_tracks(self) -> list[SwitchableTrack]:
        return [track for track in self.tracks if track.kind == "audio"]

    @property
    def video_tracks(self) -> list[SwitchableTrack]:
        return [track for track in self.tracks if track.kind == "video"]

    def stop(self) -> None:
        for track in self.tracks:
            track.stop()
            LOGGER.info("Stopped %s track", track.kind)


@dataclass
class RemoteStream:
    tracks: list[MediaStreamTrack] = field(default_factory=list)

    def add(self, track: MediaStreamTrack) -> None:
        self.tracks.append(track)

    @property
    def kinds(self) -> list[str]:
        return [track.kind for track in self.tracks]
