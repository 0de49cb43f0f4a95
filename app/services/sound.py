"""Synthesized notification beep."""

from __future__ import annotations

import io
import math
import struct
import wave
from dataclasses import dataclass

DEFAULT_SAMPLE_RATE = 8000


@dataclass(frozen=True)
class ToneStep:
    frequency_hz: float
    duration_s: float


# 800 Hz for 100 ms, then 600 Hz for 100 ms.
BEEP_STEPS = (ToneStep(800.0, 0.1), ToneStep(600.0, 0.1))
BEEP_START_GAIN = 0.1
BEEP_END_GAIN = 0.01


def render_beep(sample_rate: int = DEFAULT_SAMPLE_RATE) -> bytes:
    """Render the two-tone beep as signed 16-bit little-endian mono PCM.

    Gain decays exponentially from ``BEEP_START_GAIN`` to ``BEEP_END_GAIN``
    across the whole beep. Phase is carried across the frequency step so the
    join does not click.
    """
    total = sum(step.duration_s for step in BEEP_STEPS)
    n_total = int(round(total * sample_rate))
    decay = math.log(BEEP_END_GAIN / BEEP_START_GAIN)

    samples: list[int] = []
    phase = 0.0
    for step in BEEP_STEPS:
        n_step = int(round(step.duration_s * sample_rate))
        increment = 2 * math.pi * step.frequency_hz / sample_rate
        for _ in range(n_step):
            i = len(samples)
            gain = BEEP_START_GAIN * math.exp(decay * i / max(1, n_total - 1))
            samples.append(int(round(gain * math.sin(phase) * 32767)))
            phase += increment

    return struct.pack(f"<{len(samples)}h", *samples)


def beep_wav(sample_rate: int = DEFAULT_SAMPLE_RATE) -> bytes:
    """Return the beep wrapped in a WAV container."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(render_beep(sample_rate))
    return buf.getvalue()
