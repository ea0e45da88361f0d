import pytest

from context_rag.retrieval.fusion import apply_mmr, deduplicate_and_merge, text_overlap
from context_rag.types import SearchCandidate


def _candidate(
    item_id: str,
    combined: float,
    content: str | None = None,
    rerank: float | None = None,
) -> SearchCandidate:
    return SearchCandidate(
        id=item_id,
        document_id="doc-1",
        content=content or f"content for {item_id}",
        similarity=combined,
        keyword_score=0.0,
        combined_score=combined,
        rerank_score=rerank,
    )


def test_merge_keeps_highest_scoring_duplicate_and_tracks_variants() -> None:
    first = [_candidate("a", 0.4), _candidate("b", 0.9)]
    second = [_candidate("a", 0.7), _candidate("c", 0.5)]

    merged = deduplicate_and_merge([first, second], ["q", "q2"])

    assert [item.id for item in merged] == ["b", "a", "c"]
    assert merged[1].combined_score == pytest.approx(0.7)
    assert merged[1].matched_queries == ("q", "q2")
    assert merged[0].matched_queries == ("q",)
    assert merged[2].matched_queries == ("q2",)


def test_merge_of_nothing_is_empty() -> None:
    assert deduplicate_and_merge([]) == []
    assert deduplicate_and_merge([[], []]) == []


def test_merge_counts_unique_ids_across_variants() -> None:
    first = [_candidate(f"id-{i}", 0.9 - i * 0.01) for i in range(20)]
    second = [_candidate(f"id-{i}", 0.5) for i in range(14, 34)]

    merged = deduplicate_and_merge([first, second])

    assert len(merged) == 34
    assert len({item.id for item in merged}) == 34
    scores = [item.combined_score for item in merged]
    assert scores == sorted(scores, reverse=True)


def test_text_overlap_uses_larger_word_set() -> None:
    assert text_overlap("a b c d", "a b") == pytest.approx(0.5)
    assert text_overlap("A B", "a b") == pytest.approx(1.0)
    assert text_overlap("", "") == 0.0


def test_mmr_returns_small_sets_unchanged() -> None:
    candidates = [_candidate("low", 0.2, rerank=0.2), _candidate("high", 0.9, rerank=0.9)]

    assert apply_mmr(candidates, 0.2, top_k=2) == candidates


def test_mmr_starts_with_most_relevant_and_penalizes_duplicates() -> None:
    candidates = [
        _candidate("a", 0.5, "pricing tiers annual plans discount", rerank=0.9),
        _candidate("b", 0.5, "pricing tiers annual plans discount", rerank=0.85),
        _candidate("c", 0.5, "support escalation hours weekend", rerank=0.8),
        _candidate("d", 0.5, "security audit logging retention", rerank=0.1),
    ]

    selected = apply_mmr(candidates, diversity_factor=0.2, top_k=2)

    assert [item.id for item in selected] == ["a", "c"]


def test_mmr_without_diversity_follows_relevance() -> None:
    candidates = [_candidate(f"id-{i}", 0.1 * i, rerank=0.1 * i) for i in range(10)]

    selected = apply_mmr(candidates, diversity_factor=0.0, top_k=3)

    assert [item.id for item in selected] == ["id-9", "id-8", "id-7"]


def test_mmr_ties_go_to_earliest_candidate() -> None:
    candidates = [_candidate(f"id-{i}", 0.5, f"unique{i}", rerank=0.5) for i in range(6)]

    selected = apply_mmr(candidates, diversity_factor=0.2, top_k=3)

    assert [item.id for item in selected] == ["id-0", "id-1", "id-2"]


def test_mmr_equal_relevance_prefers_lower_overlap() -> None:
    candidates = [
        _candidate("first", 0.5, "pricing tiers annual plans discount", rerank=0.9),
        _candidate("similar", 0.5, "pricing tiers annual plans refund", rerank=0.7),
        _candidate("distinct", 0.5, "support escalation hours weekend coverage", rerank=0.7),
    ]

    selected = apply_mmr(candidates, diversity_factor=0.2, top_k=2)

    assert [item.id for item in selected] == ["first", "distinct"]
