"""Cross-variant merging and MMR diversity selection."""

from __future__ import annotations

from dataclasses import replace

from context_rag.types import SearchCandidate


def deduplicate_and_merge(
    result_sets: list[list[SearchCandidate]],
    query_variants: list[str] | None = None,
) -> list[SearchCandidate]:
    """Merge per-variant result sets into one list keyed by candidate id.

    When an id appears more than once, the occurrence with the higher
    `combined_score` is kept. Every variant that surfaced the id is recorded
    in `matched_queries`; it does not affect ranking.
    """

    merged: dict[str, SearchCandidate] = {}
    provenance: dict[str, list[str]] = {}

    for position, results in enumerate(result_sets):
        variant = query_variants[position] if query_variants else None
        for item in results:
            sources = provenance.setdefault(item.id, [])
            if variant is not None and variant not in sources:
                sources.append(variant)

            current = merged.get(item.id)
            if current is None or item.combined_score > current.combined_score:
                merged[item.id] = item

    return sorted(
        (
            replace(item, matched_queries=tuple(provenance[item_id]))
            for item_id, item in merged.items()
        ),
        key=lambda item: item.combined_score,
        reverse=True,
    )


def text_overlap(a: str, b: str) -> float:
    """Shared-word ratio: |A & B| / max(|A|, |B|) over lowercase whitespace tokens."""

    words_a = set(a.lower().split())
    words_b = set(b.lower().split())
    denominator = max(len(words_a), len(words_b))
    if denominator == 0:
        return 0.0
    return len(words_a & words_b) / denominator


def apply_mmr(
    candidates: list[SearchCandidate],
    diversity_factor: float,
    top_k: int,
) -> list[SearchCandidate]:
    """Greedy Maximal Marginal Relevance selection.

    Selection process:
    1. If there are no more than `top_k` candidates, return them unchanged.
    2. Take the candidate with the highest `rerank_score`.
    3. Fill each next slot with the remaining candidate maximizing
       `rerank_score - diversity_factor * max_overlap`, where `max_overlap`
       is its highest `text_overlap` against anything already selected.
       Ties go to the earliest candidate.
    """

    if len(candidates) <= top_k:
        return list(candidates)

    remaining = list(candidates)
    first = max(range(len(remaining)), key=lambda i: (_relevance(remaining[i]), -i))
    selected = [remaining.pop(first)]

    while len(selected) < top_k and remaining:
        best_idx = 0
        best_score = float("-inf")
        for i, candidate in enumerate(remaining):
            max_overlap = max(text_overlap(candidate.content, s.content) for s in selected)
            score = _relevance(candidate) - diversity_factor * max_overlap
            if score > best_score:
                best_score = score
                best_idx = i
        selected.append(remaining.pop(best_idx))

    return selected


def _relevance(item: SearchCandidate) -> float:
    return item.combined_score if item.rerank_score is None else item.rerank_score
