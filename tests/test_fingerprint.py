from __future__ import annotations

import random

from credscope.fingerprint import (
    bio_fingerprint,
    fold_samples,
    retina_fingerprint,
    to_base36,
    voice_fingerprint,
)
from credscope.security import infer_fingerprint_kind


def test_fold_samples_matches_thirty_one_multiplier() -> None:
    assert fold_samples([]) == 0
    assert fold_samples([1, 2, 3]) == (1 * 31 + 2) * 31 + 3
    assert fold_samples([1.9, 2.2]) == 1 * 31 + 2


def test_fold_samples_wraps_to_signed_32_bit() -> None:
    folded = fold_samples([255] * 64)
    assert -(2**31) <= folded < 2**31


def test_voice_fingerprint_layout() -> None:
    samples = list(range(20))
    value = voice_fingerprint(samples)
    assert value == f"VOICE-AUTH-{abs(fold_samples(samples)):X}-20Smp-HZ10"
    assert infer_fingerprint_kind(value) == "voice"


def test_voice_fingerprint_short_capture_probes_zero() -> None:
    assert voice_fingerprint([7, 8]).endswith("-2Smp-HZ0")


def test_voice_fingerprint_silence_is_seeded_by_rng() -> None:
    value = voice_fingerprint([], rng=random.Random(3))
    assert value.startswith("VOICE-AUTH-SILENCE-")
    assert 1000 <= int(value.rsplit("-", 1)[1]) <= 9999
    assert value == voice_fingerprint([], rng=random.Random(3))


def test_retina_fingerprint_reads_red_channel_only() -> None:
    pixels = [10, 200, 200, 255, 20, 1, 1, 255]
    same_red = [10, 0, 0, 0, 20, 9, 9, 9]
    first = retina_fingerprint(pixels, now_ms=1_700_000_000_000)
    assert first == retina_fingerprint(same_red, now_ms=1_700_000_000_000)
    assert first == f"RETINA-ID:{abs(fold_samples([10, 20])):x}-{to_base36(1_700_000_000_000).upper()}"
    assert infer_fingerprint_kind(first) == "retina"


def test_bio_fingerprint_device_and_simulated() -> None:
    assert bio_fingerprint(device_id="abc-" + "d" * 40) == "BIO-AUTH-DEVICE-ABC-" + "D" * 28
    simulated = bio_fingerprint(rng=random.Random(1), now_ms=1_700_000_123_456)
    assert simulated.startswith("BIO-PRNT-SIM-X")
    assert simulated.endswith("-123456")
    assert infer_fingerprint_kind(simulated) == "bio"


def test_to_base36() -> None:
    assert to_base36(0) == "0"
    assert to_base36(35) == "z"
    assert to_base36(36) == "10"
