"""PCM16 framing helpers for the voice websocket.

Client frames carry a one-byte tag followed by little-endian PCM16:
``0x01`` for microphone audio coming in, ``0x02`` for assistant audio going
out. The provider expects mono PCM16 at 24 kHz.
"""
from __future__ import annotations

import sys
from array import array
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

TAG_CLIENT_AUDIO = 0x01
TAG_ASSISTANT_AUDIO = 0x02

BYTES_PER_SAMPLE = 2
PCM16_MAX = 0x7FFF


def decode_pcm16(data: bytes) -> List[float]:
    """Little-endian PCM16 bytes to floats in [-1, 1). A trailing odd byte is ignored."""
    usable = len(data) - (len(data) % BYTES_PER_SAMPLE)
    samples = array("h")
    samples.frombytes(data[:usable])
    if sys.byteorder == "big":
        samples.byteswap()
    return [s / 32768.0 for s in samples]


def encode_pcm16(samples: Sequence[float]) -> bytes:
    """Clamp to [-1, 1] and scale by 0x7FFF (truncating, like an Int16Array store)."""
    out = array("h", (int(max(-1.0, min(1.0, s)) * PCM16_MAX) for s in samples))
    if sys.byteorder == "big":
        out.byteswap()
    return out.tobytes()


def downmix(samples: Sequence[float], channels: int) -> List[float]:
    """Average interleaved channels into mono; an incomplete trailing frame is dropped."""
    if channels <= 1:
        return list(samples)
    frames = len(samples) // channels
    return [sum(samples[i * channels:(i + 1) * channels]) / channels for i in range(frames)]


def downsample(samples: Sequence[float], from_rate: int, to_rate: int) -> List[float]:
    """Reduce ``samples`` to ``to_rate`` by averaging each source window."""
    if from_rate == to_rate or from_rate <= 0 or to_rate <= 0:
        return list(samples)
    ratio = from_rate / to_rate
    length = int(len(samples) // ratio)
    out: List[float] = []
    for i in range(length):
        start = int(i * ratio)
        end = min(int((i + 1) * ratio), len(samples))
        window = samples[start:end]
        out.append(sum(window) / len(window) if window else 0.0)
    return out


def pcm16_duration(data: bytes, sample_rate: int) -> float:
    """Seconds of mono PCM16 audio in ``data``."""
    if sample_rate <= 0:
        return 0.0
    return (len(data) // BYTES_PER_SAMPLE) / sample_rate


def frame(tag: int, payload: bytes) -> bytes:
    return bytes([tag]) + payload


def unframe(data: bytes) -> Tuple[Optional[int], bytes]:
    if not data:
        return None, b""
    return data[0], data[1:]


@dataclass
class CaptureEncoder:
    """Turns client microphone frames into provider-ready PCM16 blocks.

    Input is PCM16 at ``sample_rate`` with ``channels`` interleaved channels.
    Mono samples accumulate until ``block_samples`` are available; each full
    block is downsampled to ``target_rate`` and re-encoded.
    """

    sample_rate: int = 24000
    channels: int = 1
    target_rate: int = 24000
    block_samples: int = 4096
    _pending: List[float] = field(default_factory=list, init=False, repr=False)
    _carry: bytes = field(default=b"", init=False, repr=False)

    def feed(self, pcm: bytes) -> List[bytes]:
        data = self._carry + pcm
        frame_bytes = BYTES_PER_SAMPLE * max(1, self.channels)
        usable = len(data) - (len(data) % frame_bytes)
        self._carry = data[usable:]

        self._pending.extend(downmix(decode_pcm16(data[:usable]), self.channels))
        blocks: List[bytes] = []
        while len(self._pending) >= self.block_samples:
            block = self._pending[: self.block_samples]
            del self._pending[: self.block_samples]
            blocks.append(encode_pcm16(downsample(block, self.sample_rate, self.target_rate)))
        return blocks

    @property
    def buffered(self) -> int:
        return len(self._pending)

    def reset(self) -> None:
        self._pending.clear()
        self._carry = b""


class PlaybackScheduler:
    """Gapless, non-overlapping start times for consecutive audio chunks.

    ``start = max(now, previous_end)`` and ``end = start + duration``.
    """

    def __init__(self) -> None:
        self._next_start = 0.0

    def schedule(self, now: float, duration: float) -> Tuple[float, float]:
        start = max(now, self._next_start)
        end = start + duration
        self._next_start = end
        return start, end

    @property
    def next_start(self) -> float:
        return self._next_start

    def reset(self) -> None:
        self._next_start = 0.0


__all__ = [
    "TAG_CLIENT_AUDIO",
    "TAG_ASSISTANT_AUDIO",
    "CaptureEncoder",
    "PlaybackScheduler",
    "decode_pcm16",
    "encode_pcm16",
    "downmix",
    "downsample",
    "pcm16_duration",
    "frame",
    "unframe",
]
