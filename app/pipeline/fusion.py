"""
Reciprocal Rank Fusion.

Merges independently ordered candidate lists (dense order, sparse order)
using only positions, so heterogeneous relevance scores never need to be
normalized against each other:

    fused(id) = Σ over lists containing id of 1 / (k + rank)

rank is the 1-based position in that list.  Ties on the fused score are
broken by the lower sum of raw ranks, then by id, so the output is a
pure function of the inputs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from app.schemas.search import Candidate, RankedResult

DEFAULT_RRF_K = 60


@dataclass
class _Accumulator:
    id: str
    content: str
    score: float = 0.0
    rank_sum: int = 0
    sources: list[str] = field(default_factory=list)


def merge(
    list_a: Sequence[Candidate],
    list_b: Sequence[Candidate],
    limit: int,
    k: int = DEFAULT_RRF_K,
) -> list[RankedResult]:
    """Fuse two ranked candidate lists and return at most ``limit`` results."""
    return merge_many([list_a, list_b], limit, k=k)


def merge_many(
    ranked_lists: Sequence[Sequence[Candidate]],
    limit: int,
    k: int = DEFAULT_RRF_K,
) -> list[RankedResult]:
    """
    Fuse any number of ranked candidate lists.

    Content for an id comes from the first list that contains it; its
    score accumulates a contribution from every list that contains it.
    An id repeated inside one list only counts at its first position.
    """
    if limit <= 0:
        return []

    fused = _accumulate(ranked_lists, k)
    ordered = sorted(fused.values(), key=lambda acc: (-acc.score, acc.rank_sum, acc.id))
    return [
        RankedResult(id=acc.id, content=acc.content, score=acc.score)
        for acc in ordered[:limit]
    ]


def fused_candidates(
    ranked_lists: Sequence[Sequence[Candidate]],
    limit: int,
    k: int = DEFAULT_RRF_K,
) -> list[Candidate]:
    """
    Same ordering as ``merge_many`` but keeps candidate shape, tagging
    each entry with the sources it was found in (``dense+sparse``).
    """
    if limit <= 0:
        return []

    fused = _accumulate(ranked_lists, k)
    ordered = sorted(fused.values(), key=lambda acc: (-acc.score, acc.rank_sum, acc.id))
    return [
        Candidate(
            id=acc.id,
            content=acc.content,
            score=acc.score,
            source="+".join(acc.sources),
        )
        for acc in ordered[:limit]
    ]


def _accumulate(
    ranked_lists: Sequence[Sequence[Candidate]],
    k: int,
) -> dict[str, _Accumulator]:
    fused: dict[str, _Accumulator] = {}
    for ranked in ranked_lists:
        seen: set[str] = set()
        for rank, candidate in enumerate(ranked, start=1):
            if candidate.id in seen:
                continue
            seen.add(candidate.id)

            acc = fused.get(candidate.id)
            if acc is None:
                acc = _Accumulator(id=candidate.id, content=candidate.content)
                fused[candidate.id] = acc
            acc.score += 1.0 / (k + rank)
            acc.rank_sum += rank
            if candidate.source and candidate.source not in acc.sources:
                acc.sources.append(candidate.source)
    return fused
