from __future__ import annotations

"""Rolling-hash reducers that turn captured sample streams into credential strings.

These are deliberately simple multiply-shift folds, not biometric security.
The engine treats every fingerprint as opaque text.
"""

import random
import time
from typing import Iterable, Sequence

BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"
RGBA_STRIDE = 4
VOICE_PROBE_INDEX = 10
DEVICE_ID_CHARS = 32


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    if value & 0x80000000:
        return value - 0x100000000
    return value


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def fold_samples(samples: Iterable[int | float]) -> int:
    """Fold samples with `h = int32(h * 31 + sample)`; floats truncate toward zero."""

    folded = 0
    for sample in samples:
        folded = _to_int32((folded << 5) - folded + int(sample))
    return folded


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("base36 rendering requires a non-negative integer")
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def voice_fingerprint(samples: Sequence[int | float], *, rng: random.Random | None = None) -> str:
    """Encode per-frame peak frequency magnitudes."""

    if not samples:
        generator = rng or random.Random()
        return f"VOICE-AUTH-SILENCE-{generator.randint(1000, 9999)}"
    folded = fold_samples(samples)
    probe = int(samples[VOICE_PROBE_INDEX]) if len(samples) > VOICE_PROBE_INDEX else 0
    return f"VOICE-AUTH-{abs(folded):X}-{len(samples)}Smp-HZ{probe}"


def retina_fingerprint(pixels: Sequence[int], *, now_ms: int | None = None) -> str:
    """Encode the red channel of an RGBA pixel block."""

    folded = fold_samples(pixels[::RGBA_STRIDE])
    stamp = to_base36(_now_ms() if now_ms is None else now_ms).upper()
    return f"RETINA-ID:{abs(folded):x}-{stamp}"


def bio_fingerprint(
    *,
    device_id: str | None = None,
    rng: random.Random | None = None,
    now_ms: int | None = None,
) -> str:
    if device_id:
        return f"BIO-AUTH-DEVICE-{device_id[:DEVICE_ID_CHARS].upper()}"
    generator = rng or random.Random()
    stamp = str(_now_ms() if now_ms is None else now_ms)[-6:]
    return f"BIO-PRNT-SIM-X{generator.randint(0, 9998)}-{stamp}"
