"""ID generation and parsing.

IDs have a prefix-suffix format: "bd-a3f8", "ext-42", "bd-mol-xyz".
Hierarchical child IDs use dot notation: "bd-a3f8.1", "bd-a3f8.1.2".

Suffixes are base-36 ([0-9a-z]) strings of 3..8 characters, either drawn
at random or derived from a SHA-256 of the record content (for
reproducible imports).
"""

from __future__ import annotations

import hashlib
import math
import secrets
from datetime import UTC, datetime

from rigstore.errors import InvalidInputError, MaxDepthExceededError

MIN_LENGTH = 3
MAX_LENGTH = 8
# Birthday-paradox threshold above which adaptive_length grows the suffix.
MAX_COLLISION_PROBABILITY = 0.25
# Nonces tried by content-hash callers before escalating the length.
MAX_NONCE = 9
DEFAULT_MAX_HIERARCHY_DEPTH = 3

_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(n: int, length: int) -> str:
    """Encode n in base 36, left-padded with zeros to length."""
    digits: list[str] = []
    while n:
        n, rem = divmod(n, 36)
        digits.append(_ALPHABET[rem])
    return "".join(reversed(digits)).rjust(length, "0")


def _check_length(length: int) -> None:
    if not MIN_LENGTH <= length <= MAX_LENGTH:
        msg = f"id length {length} out of range [{MIN_LENGTH}, {MAX_LENGTH}]"
        raise InvalidInputError(msg)


def random_id(prefix: str, length: int) -> str:
    """Return prefix + `length` random base-36 chars from the OS CSPRNG."""
    _check_length(length)
    return prefix + _base36(secrets.randbelow(36**length), length)


def adaptive_length(existing_count: int) -> int:
    """Smallest length keeping P(collision) ≈ 1 - e^(-n²/2N) under the threshold.

    N = 36^length. Saturates at MAX_LENGTH.
    """
    n = float(existing_count)
    for length in range(MIN_LENGTH, MAX_LENGTH + 1):
        namespace = 36.0**length
        if 1 - math.exp(-(n * n) / (2 * namespace)) < MAX_COLLISION_PROBABILITY:
            return length
    return MAX_LENGTH


def _unix_nanos(ts: datetime) -> int:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    # Integer arithmetic: float timestamps lose the sub-microsecond digits.
    delta = ts - datetime(1970, 1, 1, tzinfo=UTC)
    return (delta.days * 86_400 + delta.seconds) * 1_000_000_000 + delta.microseconds * 1_000


def hash_id(
    prefix: str,
    title: str,
    description: str,
    creator: str,
    timestamp: datetime,
    nonce: int,
    length: int,
) -> str:
    """Deterministic content-derived ID.

    SHA-256 over "title|description|creator|unix_nanos|nonce"; the first
    ceil(length*5/8) bytes are read big-endian, reduced mod 36^length and
    encoded like random_id.
    """
    _check_length(length)
    content = f"{title}|{description}|{creator}|{_unix_nanos(timestamp)}|{nonce}"
    digest = hashlib.sha256(content.encode()).digest()
    num_bytes = (length * 5 + 7) // 8
    n = int.from_bytes(digest[:num_bytes], "big") % (36**length)
    return prefix + _base36(n, length)


# ---------------------------------------------------------------------------
# Prefixes
# ---------------------------------------------------------------------------


def build_prefix(base: str, addition: str = "") -> str:
    """Compose a prefix that ends with exactly one hyphen.

        build_prefix("bd-", "")      → "bd-"
        build_prefix("bd", "mol")    → "bd-mol-"
        build_prefix("bd-", "-mol-") → "bd-mol-"
    """
    base = base.rstrip("-")
    addition = addition.strip("-")
    if not addition:
        return base + "-"
    return f"{base}-{addition}-"


# ---------------------------------------------------------------------------
# Hierarchical IDs
# ---------------------------------------------------------------------------


def is_hierarchical_id(id: str) -> bool:  # noqa: A002
    """True if the segment after the last dot is non-empty and all digits."""
    _, dot, suffix = id.rpartition(".")
    return bool(dot) and suffix.isascii() and suffix.isdigit()


def root_parent_id(id: str) -> str:  # noqa: A002
    return id.partition(".")[0]


def parse_hierarchical_id(id: str) -> tuple[str, int, bool]:  # noqa: A002
    """Split "bd-a3f8.2" into ("bd-a3f8", 2, True); ("", 0, False) otherwise."""
    if not is_hierarchical_id(id):
        return "", 0, False
    parent, _, num = id.rpartition(".")
    return parent, int(num), True


def hierarchy_depth(id: str) -> int:  # noqa: A002
    """Number of dots in id. Purely structural: "my.project-abc" has depth 1."""
    return id.count(".")


def child_id(parent_id: str, child_num: int) -> str:
    return f"{parent_id}.{child_num}"


def check_hierarchy_depth(parent_id: str, max_depth: int) -> None:
    """Raise MaxDepthExceededError if a child of parent_id would exceed max_depth."""
    depth = hierarchy_depth(parent_id)
    if depth + 1 > max_depth:
        raise MaxDepthExceededError(parent_id, depth, max_depth)
