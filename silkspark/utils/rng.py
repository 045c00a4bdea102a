"""Deterministic, addressable RNG utilities for reproducible card shuffling.

Every value is a pure function of ``(seed, labels...)``: the Nth output is
derived directly from a hash, so there is no generator state to replay or lose
between calls.
"""

import hashlib
import re
from typing import List, Sequence, Union

SEED_PATTERN = re.compile(r"^[0-9a-f]{64}$")

_UNIT_BITS = 53


class InvalidSeedError(ValueError):
    """Raised when a seed is missing or not a value produced by make_seed."""


def make_seed(*parts: str) -> str:
    """Derive an opaque seed from its inputs.

    Args:
        parts: Seed inputs, e.g. ("daily", user_key, "2024-01-15")

    Returns:
        64-character hex digest
    """
    if not parts or any(not isinstance(p, str) or p == "" for p in parts):
        raise InvalidSeedError(f"Seed inputs must be non-empty strings: {parts!r}")
    combined = ":".join(parts)
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()


def check_seed(seed: object) -> str:
    """Fail fast on a missing or malformed seed."""
    if not isinstance(seed, str) or not SEED_PATTERN.match(seed):
        raise InvalidSeedError(f"Invalid seed: {seed!r}")
    return seed


def unit(seed: str, *labels: Union[str, int]) -> float:
    """Uniform float in [0, 1) addressed by seed and labels.

    Args:
        seed: Seed from make_seed
        labels: Stream name and counter, e.g. ("reversed", 12)

    Returns:
        Float built from the top 53 bits of sha256(seed|labels)
    """
    check_seed(seed)
    material = "|".join([seed, *(str(label) for label in labels)])
    digest = hashlib.sha256(material.encode("utf-8")).digest()
    return (int.from_bytes(digest[:8], "big") >> (64 - _UNIT_BITS)) / float(1 << _UNIT_BITS)


def permutation(seed: str, size: int) -> List[int]:
    """Seeded permutation of range(size).

    Each index gets an independent rank from ``unit(seed, "rank", i)``;
    sorting by rank gives the shuffle, ties broken by index.
    """
    check_seed(seed)
    if size < 0:
        raise ValueError(f"size must be >= 0, got {size}")
    return sorted(range(size), key=lambda i: (unit(seed, "rank", i), i))


def shuffle_deck(deck_ids: Sequence[str], seed: str) -> List[str]:
    """Shuffle a deck of card IDs deterministically.

    Args:
        deck_ids: Card IDs in catalog order
        seed: Seed from make_seed

    Returns:
        New list with shuffled card IDs
    """
    return [deck_ids[i] for i in permutation(seed, len(deck_ids))]


def coin(seed: str, probability: float, *labels: Union[str, int]) -> bool:
    """Addressable biased coin: True with the given probability."""
    return unit(seed, *labels) < probability
