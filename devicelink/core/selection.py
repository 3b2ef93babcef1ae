"""Candidate matching and default device selection."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence

from devicelink.core.errors import NoDeviceSelectedError
from devicelink.core.model import DeviceCandidate, TransportKind

DeviceSelector = Callable[[TransportKind, Sequence[DeviceCandidate]], Awaitable[DeviceCandidate | None]]


def match_score(candidate: DeviceCandidate, hint: str) -> int:
    lowered = hint.lower()
    if candidate.id.lower() == lowered:
        return 3
    if lowered in candidate.id.lower():
        return 2
    if lowered in candidate.name.lower() or lowered in candidate.detail.lower():
        return 1
    return 0


def filter_candidates(candidates: Sequence[DeviceCandidate], hint: str | None) -> list[DeviceCandidate]:
    """Keep the best-scoring candidates for ``hint`` (all of them when no hint)."""
    if not hint:
        return list(candidates)
    scored = [(match_score(c, hint), c) for c in candidates]
    best = max((score for score, _ in scored), default=0)
    if best == 0:
        return []
    return [c for score, c in scored if score == best]


async def single_candidate(
    kind: TransportKind, candidates: Sequence[DeviceCandidate]
) -> DeviceCandidate | None:
    """Selector used when no interactive picker is wired in."""
    if not candidates:
        return None
    if len(candidates) > 1:
        candidate_desc = ", ".join(f"{c.id} ({c.name})" for c in candidates)
        raise NoDeviceSelectedError(
            f"Multiple {kind.value} devices found: {candidate_desc}. Choose one explicitly."
        )
    return candidates[0]


def hinted_selector(hint: str | None, fallback: DeviceSelector = single_candidate) -> DeviceSelector:
    async def _select(kind: TransportKind, candidates: Sequence[DeviceCandidate]) -> DeviceCandidate | None:
        narrowed = filter_candidates(candidates, hint)
        if hint and not narrowed:
            raise NoDeviceSelectedError(f"No {kind.value} device found matching '{hint}'")
        return await fallback(kind, narrowed)

    return _select
