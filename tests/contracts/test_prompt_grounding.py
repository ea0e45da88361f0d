from context_rag.prompting import (
    _SYSTEM_PROMPT,
    build_empty_context_prompt,
    build_rag_prompt,
    follow_up_suggestions,
)
from context_rag.retrieval.query_expansion import EXPANSION_PROMPT
from context_rag.retrieval.reranker import RERANK_PROMPT
from context_rag.types import SearchCandidate


def _chunk(item_id: str, score: float, header: str | None, page: int | None) -> SearchCandidate:
    return SearchCandidate(
        id=item_id,
        document_id="doc-1",
        content=f"content of {item_id}",
        similarity=score,
        keyword_score=0.0,
        combined_score=score,
        page_number=page,
        section_header=header,
    )


def test_prompt_contains_grounding_constraints() -> None:
    assert "Answer only from the numbered sources" in _SYSTEM_PROMPT
    assert "Cite every factual statement" in _SYSTEM_PROMPT
    assert "Never invent" in build_empty_context_prompt()


def test_json_prompts_name_their_response_keys() -> None:
    assert '"variants"' in EXPANSION_PROMPT.format(query="q")
    assert '"scores"' in RERANK_PROMPT.format(query="q", excerpts="[1] text...")


def test_rag_prompt_numbers_sources_and_scores_confidence() -> None:
    chunks = [
        _chunk("a", 0.8, "Pricing", 2),
        _chunk("b", 0.6, None, None),
        _chunk("c", 0.7, "Pricing", 5),
    ]

    prompt = build_rag_prompt(chunks)

    assert prompt.formatted_context.split("\n\n---\n\n") == [
        "[1] [Page 2] (Pricing) content of a",
        "[2] content of b",
        "[3] [Page 5] (Pricing) content of c",
    ]
    assert prompt.formatted_context in prompt.system_prompt
    assert [source.index for source in prompt.sources] == [1, 2, 3]
    assert prompt.confidence == 70
    assert follow_up_suggestions(chunks) == ["Tell me more about Pricing"]


def test_confidence_is_capped_and_zero_without_chunks() -> None:
    assert build_rag_prompt([_chunk("a", 1.4, None, None)]).confidence == 100
    assert build_rag_prompt([]).confidence == 0
