import struct

import pytest

from bevpro.realtime.audio import (
    TAG_ASSISTANT_AUDIO,
    TAG_CLIENT_AUDIO,
    CaptureEncoder,
    PlaybackScheduler,
    decode_pcm16,
    downmix,
    downsample,
    encode_pcm16,
    frame,
    pcm16_duration,
    unframe,
)


def pcm(*samples):
    return struct.pack("<%dh" % len(samples), *samples)


def unpack(data):
    return list(struct.unpack("<%dh" % (len(data) // 2), data))


# ─── Codec ─────────────────────────────────────────────────────────────────────
def test_decode_scales_to_unit_range():
    assert decode_pcm16(pcm(0, 16384, -32768)) == [0.0, 0.5, -1.0]


def test_decode_ignores_trailing_odd_byte():
    assert decode_pcm16(pcm(16384) + b"\x01") == [0.5]


def test_encode_clamps_and_truncates():
    assert unpack(encode_pcm16([0.0, 1.0, -1.0, 2.0, -3.0, 0.5])) == [0, 32767, -32767, 32767, -32767, 16383]


def test_downmix_averages_channels():
    assert downmix([0.2, 0.4, -1.0, 1.0, 0.5], 2) == pytest.approx([0.3, 0.0])
    assert downmix([0.1, 0.2], 1) == [0.1, 0.2]


def test_downsample_averages_windows():
    assert downsample([1.0, 3.0, 5.0, 7.0], 48000, 24000) == [2.0, 6.0]
    assert downsample([0.1, 0.2], 24000, 24000) == [0.1, 0.2]


def test_duration_and_framing():
    assert pcm16_duration(b"\x00" * 48000, 24000) == 1.0
    assert frame(TAG_ASSISTANT_AUDIO, b"ab") == b"\x02ab"
    assert unframe(b"\x01xy") == (TAG_CLIENT_AUDIO, b"xy")
    assert unframe(b"") == (None, b"")


# ─── Capture ───────────────────────────────────────────────────────────────────
def test_capture_encoder_blocks_and_buffers():
    encoder = CaptureEncoder(sample_rate=24000, channels=1, target_rate=24000, block_samples=4)
    assert encoder.feed(pcm(100, 200, 300)) == []
    assert encoder.buffered == 3

    blocks = encoder.feed(pcm(400, 500))
    assert len(blocks) == 1
    assert len(blocks[0]) == 8
    assert encoder.buffered == 1


def test_capture_encoder_downmixes_and_downsamples():
    encoder = CaptureEncoder(sample_rate=48000, channels=2, target_rate=24000, block_samples=4)
    # four stereo frames, left/right identical
    blocks = encoder.feed(pcm(16384, 16384, 16384, 16384, -16384, -16384, -16384, -16384))
    assert len(blocks) == 1
    assert unpack(blocks[0]) == [16383, -16383]


def test_capture_encoder_carries_split_frames():
    encoder = CaptureEncoder(sample_rate=24000, channels=1, target_rate=24000, block_samples=2)
    data = pcm(1000, 2000)
    assert encoder.feed(data[:3]) == []
    blocks = encoder.feed(data[3:])
    assert len(blocks) == 1
    encoder.reset()
    assert encoder.buffered == 0


# ─── Playback scheduling ───────────────────────────────────────────────────────
def test_scheduler_is_gapless_and_non_overlapping():
    scheduler = PlaybackScheduler()
    assert scheduler.schedule(10.0, 0.5) == (10.0, 10.5)
    assert scheduler.schedule(10.1, 0.5) == (10.5, 11.0)
    # a late chunk starts at now rather than in the past
    assert scheduler.schedule(12.0, 0.25) == (12.0, 12.25)
    scheduler.reset()
    assert scheduler.next_start == 0.0
