"""
Request identifier generation.

An id is three base-36 parts joined with no separator:
  random (7 chars) + wall clock in ms + process-wide counter

The random part spreads ids across bursts, the clock and counter keep two ids
minted in the same millisecond apart. Ids are routing keys, not secrets.
"""
from __future__ import annotations

import itertools
import random
import string
import time

_ALPHABET = string.digits + string.ascii_lowercase
_RANDOM_CHARS = 7

_counter = itertools.count()
_rng = random.Random()


def _base36(n: int) -> str:
    if n == 0:
        return "0"
    digits = []
    while n:
        n, rem = divmod(n, 36)
        digits.append(_ALPHABET[rem])
    return "".join(reversed(digits))


def generate_request_id() -> str:
    prefix = "".join(_rng.choices(_ALPHABET, k=_RANDOM_CHARS))
    millis = time.time_ns() // 1_000_000
    return f"{prefix}{_base36(millis)}{_base36(next(_counter))}"
