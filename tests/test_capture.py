"""Tests for frame sources and utterances."""

import asyncio
import sys
import types

import numpy as np
import pytest

from voicebridge.audio.capture import AudioCaptureConfig, MicCapture, StreamedFrameSource, Utterance
from voicebridge.audio.pcm import float_to_pcm16
from voicebridge.errors import CaptureError, PermissionDenied


class MockPortAudioError(Exception):
    pass


def make_sounddevice(error_message: str) -> types.ModuleType:
    """Build a sounddevice stand-in whose InputStream always fails."""
    module = types.ModuleType("sounddevice")
    module.PortAudioError = MockPortAudioError

    def input_stream(**kwargs):
        raise MockPortAudioError(error_message)

    module.InputStream = input_stream
    return module


class MockInputStream:
    def __init__(self, **kwargs):
        self.finished_callback = kwargs["finished_callback"]
        self.active = False
        self.closed = False

    def start(self):
        self.active = True

    def stop(self):
        self.active = False

    def close(self):
        self.closed = True


def make_working_sounddevice(streams: list) -> types.ModuleType:
    """Build a sounddevice stand-in that records every stream it opens."""
    module = types.ModuleType("sounddevice")
    module.PortAudioError = MockPortAudioError

    def input_stream(**kwargs):
        stream = MockInputStream(**kwargs)
        streams.append(stream)
        return stream

    module.InputStream = input_stream
    return module


class TestUtterance:
    def test_accepts_chunks_until_sealed(self):
        utterance = Utterance(start_ms=100.0)
        assert utterance.append(b"\x01\x00")
        utterance.seal(900.0)

        assert utterance.is_sealed
        assert not utterance.append(b"\x02\x00")
        assert utterance.audio == b"\x01\x00"
        assert utterance.duration_ms == 800.0

    def test_seal_is_idempotent(self):
        utterance = Utterance(start_ms=0.0)
        utterance.seal(10.0)
        utterance.seal(20.0)
        assert utterance.end_ms == 10.0

    def test_open_utterance_has_no_duration(self):
        assert Utterance(start_ms=5.0).duration_ms == 0.0


class TestStreamedFrameSource:
    @pytest.mark.asyncio
    async def test_pushed_pcm_reaches_subscriber(self):
        source = StreamedFrameSource(sample_rate=16000)
        await source.start()
        subscription = source.subscribe()

        source.push_pcm(float_to_pcm16(np.full(160, 0.25)))
        frame = await asyncio.wait_for(subscription.__anext__(), timeout=1)

        assert len(frame.samples) == 160
        assert frame.sample_rate == 16000
        assert frame.duration_ms == 10.0
        assert source.chunks_received == 1

    @pytest.mark.asyncio
    async def test_push_ignored_while_stopped(self):
        source = StreamedFrameSource()
        subscription = source.subscribe()

        source.push_pcm(b"\x00\x00" * 10)
        source.push_samples(np.zeros(10))
        subscription.close()

        assert source.chunks_received == 0
        assert [frame async for frame in subscription] == []

    @pytest.mark.asyncio
    async def test_stop_ends_iteration(self):
        source = StreamedFrameSource()
        await source.start()
        subscription = source.subscribe()

        source.push_samples(np.zeros(32))
        await source.stop()

        frames = [frame async for frame in subscription]
        assert len(frames) == 1
        assert not source.is_running

    @pytest.mark.asyncio
    async def test_fail_raises_in_subscriber(self):
        source = StreamedFrameSource()
        await source.start()
        subscription = source.subscribe()

        source.fail(CaptureError("socket dropped"))

        with pytest.raises(CaptureError):
            await subscription.__anext__()
        assert not source.is_running

    @pytest.mark.asyncio
    async def test_fan_out_to_every_subscriber(self):
        source = StreamedFrameSource()
        await source.start()
        first, second = source.subscribe(), source.subscribe()

        source.push_samples(np.zeros(16))

        assert len((await first.__anext__()).samples) == 16
        assert len((await second.__anext__()).samples) == 16

    @pytest.mark.asyncio
    async def test_closed_subscription_stops_receiving(self):
        source = StreamedFrameSource()
        await source.start()
        subscription = source.subscribe()
        subscription.close()

        source.push_samples(np.zeros(16))

        assert subscription.closed
        assert [frame async for frame in subscription] == []


class TestMicCapture:
    @pytest.mark.asyncio
    async def test_permission_error_maps_to_permission_denied(self, monkeypatch):
        monkeypatch.setitem(
            sys.modules,
            "sounddevice",
            make_sounddevice("Error opening InputStream: Permission denied"),
        )
        mic = MicCapture(AudioCaptureConfig(sample_rate=16000))

        with pytest.raises(PermissionDenied):
            await mic.start()
        assert not mic.is_running

    @pytest.mark.asyncio
    async def test_missing_device_maps_to_capture_error(self, monkeypatch):
        monkeypatch.setitem(
            sys.modules,
            "sounddevice",
            make_sounddevice("Error querying device -1"),
        )
        mic = MicCapture()

        with pytest.raises(CaptureError) as exc_info:
            await mic.start()
        assert not isinstance(exc_info.value, PermissionDenied)

    @pytest.mark.asyncio
    async def test_restart_after_stream_death_closes_old_stream(self, monkeypatch):
        streams: list[MockInputStream] = []
        monkeypatch.setitem(sys.modules, "sounddevice", make_working_sounddevice(streams))
        mic = MicCapture()
        subscription = mic.subscribe()

        await mic.start()
        streams[0].finished_callback()
        with pytest.raises(CaptureError):
            await subscription.__anext__()
        assert not mic.is_running

        await mic.start()

        assert len(streams) == 2
        assert streams[0].closed
        assert streams[1].active and not streams[1].closed

        await mic.stop()
        assert streams[1].closed
