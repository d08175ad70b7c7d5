"""
Eviction scoring for namespace maps.

score = size / (access_count + 1) * (now - last_accessed_at)

Large, rarely read, long idle entries score highest and go first. Equal
scores fall back to the older created_at, then the key, so the order is
deterministic.
"""

from __future__ import annotations

import math

from rlcache.types import CacheEntry


def eviction_score(entry: CacheEntry, now: int) -> float:
    """Score an entry for removal. Higher means evict sooner."""
    idle_ms = max(0, now - entry.last_accessed_at)
    return entry.size_bytes / (entry.access_count + 1) * idle_ms


def total_size(entries: dict[str, CacheEntry]) -> int:
    """Sum of entry sizes."""
    return sum(entry.size_bytes for entry in entries.values())


def rank_for_eviction(entries: dict[str, CacheEntry], now: int) -> list[str]:
    """Keys ordered from first to last eviction candidate."""
    return sorted(
        entries,
        key=lambda key: (
            -eviction_score(entries[key], now),
            entries[key].created_at,
            key,
        ),
    )


def evict_to_target(
    entries: dict[str, CacheEntry],
    max_size_bytes: int,
    target_ratio: float,
    now: int,
) -> list[str]:
    """Remove entries in rank order once the map is over max_size_bytes.

    Mutates entries in place. Nothing is removed while the total is within
    max_size_bytes; otherwise removal continues until the total is at most
    target_ratio * max_size_bytes.

    Returns:
        Removed keys, in removal order.
    """
    remaining = total_size(entries)
    if remaining <= max_size_bytes:
        return []

    target = target_ratio * max_size_bytes
    removed: list[str] = []
    for key in rank_for_eviction(entries, now):
        if remaining <= target:
            break
        remaining -= entries.pop(key).size_bytes
        removed.append(key)
    return removed


def select_for_quota_recovery(
    entries: dict[str, CacheEntry],
    fraction: float,
    now: int,
) -> list[str]:
    """Top-ranked keys covering fraction of the entries by count.

    Rounded up, so a non-empty map always gives up at least one entry.
    """
    count = math.ceil(len(entries) * fraction)
    return rank_for_eviction(entries, now)[:count]
