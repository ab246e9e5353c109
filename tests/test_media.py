from __future__ import annotations

import av
import numpy as np
import pytest

import media.capture as capture
from calls.errors import MediaAccessDenied
from media.capture import DeviceMediaProvider
from media.stream import LocalStream, SwitchableTrack


class FrameSource:
    def __init__(self, kind: str, frame) -> None:
        self.kind = kind
        self.frame = frame
        self.stopped = False

    async def recv(self):
        return self.frame

    def stop(self) -> None:
        self.stopped = True


def audio_frame() -> av.AudioFrame:
    samples = np.full((1, 960), 1000, dtype=np.int16)
    frame = av.AudioFrame.from_ndarray(samples, format="s16", layout="mono")
    frame.sample_rate = 48000
    frame.pts = 960
    return frame


def video_frame() -> av.VideoFrame:
    frame = av.VideoFrame.from_ndarray(np.full((4, 6, 3), 200, dtype=np.uint8), format="bgr24")
    frame.pts = 3000
    return frame


@pytest.mark.asyncio
async def test_disabled_audio_track_sends_silence() -> None:
    track = SwitchableTrack(FrameSource("audio", audio_frame()))

    live = await track.recv()
    track.enabled = False
    silent = await track.recv()

    assert int(np.max(live.to_ndarray())) == 1000
    assert int(np.max(np.abs(silent.to_ndarray()))) == 0
    assert silent.sample_rate == 48000
    assert silent.pts == 960


@pytest.mark.asyncio
async def test_disabled_video_track_sends_black_frames() -> None:
    track = SwitchableTrack(FrameSource("video", video_frame()))
    track.enabled = False

    black = await track.recv()

    assert (black.width, black.height) == (6, 4)
    assert int(black.to_ndarray(format="bgr24").max()) == 0
    assert black.pts == 3000


def test_stopping_stream_stops_sources() -> None:
    sources = [FrameSource("audio", None), FrameSource("video", None)]
    stream = LocalStream(tracks=[SwitchableTrack(source) for source in sources])

    assert [track.kind for track in stream.audio_tracks] == ["audio"]
    assert [track.kind for track in stream.video_tracks] == ["video"]
    stream.stop()

    assert all(source.stopped for source in sources)


class FakePlayer:
    def __init__(self, file, format=None, options=None) -> None:
        self.file = file
        self.format = format
        self.options = options
        self.audio = FrameSource("audio", None) if format == "pulse" else None
        self.video = FrameSource("video", None) if format == "v4l2" else None


@pytest.mark.asyncio
async def test_device_provider_opens_microphone_and_camera(monkeypatch) -> None:
    opened: list[FakePlayer] = []

    def player(*args, **kwargs):
        opened.append(FakePlayer(*args, **kwargs))
        return opened[-1]

    monkeypatch.setattr(capture, "MediaPlayer", player)

    stream = await DeviceMediaProvider().acquire("video")

    assert [track.kind for track in stream.tracks] == ["audio", "video"]
    assert opened[1].options == {"video_size": "1280x720", "framerate": "30"}


@pytest.mark.asyncio
async def test_device_errors_become_media_access_denied(monkeypatch) -> None:
    def unavailable(*args, **kwargs):
        raise OSError("No such device")

    monkeypatch.setattr(capture, "MediaPlayer", unavailable)

    with pytest.raises(MediaAccessDenied):
        await DeviceMediaProvider().acquire("voice")


@pytest.mark.asyncio
async def test_missing_camera_releases_microphone(monkeypatch) -> None:
    opened: list[FakePlayer] = []

    def player(file, format=None, options=None):
        opened.append(FakePlayer(file, format="pulse" if format == "pulse" else "none"))
        return opened[-1]

    monkeypatch.setattr(capture, "MediaPlayer", player)

    with pytest.raises(MediaAccessDenied):
        await DeviceMediaProvider().acquire("video")
    assert opened[0].audio.stopped
