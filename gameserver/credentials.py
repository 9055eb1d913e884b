"""
credentials.py - Credential encoding policy.

Accounts store either a legacy plaintext password (scheme NONE, schema 1000
and not-yet-converted 1200 rows) or a bcrypt digest with a per-record salt
(scheme BCRYPT). A scheme only ever moves NONE -> BCRYPT.

Verification dispatches on the scheme stored with the account, never on the
shape of the supplied secret. Unknown schemes are rejected.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Callable, Dict, Optional

from passlib.hash import bcrypt as bcrypt_hash

logger = logging.getLogger("credentials")

MIN_COST_FACTOR = 9
DEFAULT_COST_FACTOR = 12
MAX_COST_FACTOR = 31

# Calibration window, milliseconds per hash
TOO_SLOW_MSEC = 1200
WINDOW_MIN_MSEC = 270
WINDOW_MAX_MSEC = 620
PROBE_HASHES = 7

MAX_SECRET_LENGTH = 20


class EncodingScheme(IntEnum):
    NONE = 0
    BCRYPT = 1
    COST_HASH = 1


def validate_cost_factor(value: int) -> int:
    """Return value if it's an allowed cost factor, else raise ValueError."""
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError("Bad format, integer is required")
    if value < MIN_COST_FACTOR or value > MAX_COST_FACTOR:
        raise ValueError(
            "Out of range (%d-%d): %d" % (MIN_COST_FACTOR, MAX_COST_FACTOR, value)
        )
    return value


class CredentialPolicy:
    """Encodes new credentials and verifies stored ones."""

    def __init__(self, cost_factor: int = DEFAULT_COST_FACTOR):
        self.cost_factor = cost_factor

    @property
    def scheme(self) -> EncodingScheme:
        """Scheme used for every newly encoded credential."""
        return EncodingScheme.BCRYPT

    def encode(self, secret: str) -> str:
        return bcrypt_hash.using(rounds=self.cost_factor).hash(secret)

    def verify(self, scheme: Optional[int], secret: str, stored: Optional[str]) -> bool:
        """Check secret against a stored credential of the given scheme.

        A null scheme is NONE. Malformed digests and unknown schemes are a
        rejection, not an error.
        """
        if stored is None or secret is None:
            return False
        if scheme is None:
            scheme = EncodingScheme.NONE
        if scheme == EncodingScheme.NONE:
            return stored == secret
        if scheme == EncodingScheme.BCRYPT:
            try:
                return bcrypt_hash.verify(secret, stored)
            except (ValueError, TypeError):
                logger.warning("Malformed bcrypt credential; rejecting")
                return False
        logger.warning("Unknown credential encoding scheme %r; rejecting", scheme)
        return False


# ---------------------------------------------------------------------------
# Cost factor calibration
# ---------------------------------------------------------------------------

@dataclass
class CalibrationResult:
    """Outcome of calibrate_cost_factor().

    timings maps cost factor -> average milliseconds per hash, or None when
    the factor was abandoned as too slow.
    """

    recommended: Optional[int]
    timings: Dict[int, Optional[float]] = field(default_factory=dict)

    def format_table(self) -> str:
        lines = ["WF:  bcrypt time (ms) per password:"]
        for wf in sorted(self.timings):
            ms = self.timings[wf]
            text = "> %.1f" % TOO_SLOW_MSEC if ms is None else "%.1f" % ms
            if wf == self.recommended:
                text += "  <--- Recommended Work Factor ---"
            lines.append("%2d   %s" % (wf, text))
        return "\n".join(lines)


def _default_hash(secret: str, cost_factor: int) -> str:
    return bcrypt_hash.using(rounds=cost_factor).hash(secret)


def _probe_range(
    timings: Dict[int, Optional[float]],
    wf_from: int,
    wf_to: int,
    hash_fn: Callable[[str, int], str],
    clock: Callable[[], float],
) -> int:
    """Time each factor in [wf_from, wf_to] (either direction).

    Returns the highest factor inside the latency window, -1 if none is, or
    -2 if every factor was too fast.
    """
    wf_from = min(wf_from, MAX_COST_FACTOR)
    wf_to = min(wf_to, MAX_COST_FACTOR)
    step = 1 if wf_from <= wf_to else -1

    all_too_fast = True
    best = -1
    for wf in range(wf_from, wf_to + step, step):
        start = clock()
        too_slow = False
        for i in range(PROBE_HASHES):
            hash_fn("calibrate", wf)
            if i == 1 and ((clock() - start) * 1000.0 / 2) > TOO_SLOW_MSEC:
                too_slow = True
                break
        elapsed_ms = (clock() - start) * 1000.0

        if too_slow:
            timings[wf] = None
            all_too_fast = False
            continue

        speed = elapsed_ms / PROBE_HASHES
        timings[wf] = speed
        if speed >= WINDOW_MIN_MSEC:
            all_too_fast = False
            if speed <= WINDOW_MAX_MSEC and wf > best:
                best = wf

    return -2 if all_too_fast else best


def calibrate_cost_factor(
    hash_fn: Optional[Callable[[str, int], str]] = None,
    clock: Callable[[], float] = time.perf_counter,
    default: int = DEFAULT_COST_FACTOR,
) -> CalibrationResult:
    """Measure hashing cost around the default factor and recommend one.

    Probes default+3 down to default-3 (high to low, so progress speeds up).
    While every probed factor is too fast, probes the next 3 factors above.
    """
    hash_fn = hash_fn or _default_hash
    timings: Dict[int, Optional[float]] = {}

    high = min(default + 3, MAX_COST_FACTOR)
    recommended = _probe_range(timings, high, max(default - 3, 4), hash_fn, clock)
    while recommended == -2:
        if high >= MAX_COST_FACTOR:
            logger.warning("Maximum bcrypt work factor is still too fast")
            break
        new_high = min(high + 3, MAX_COST_FACTOR)
        recommended = _probe_range(timings, high + 1, new_high, hash_fn, clock)
        high = new_high

    result = CalibrationResult(recommended if recommended >= 0 else None, timings)
    logger.info("Cost factor calibration: recommended=%s", result.recommended)
    return result
