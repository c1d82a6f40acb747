from __future__ import annotations

import pytest

from mcp_servers.gated_browser.config import TokenBudget
from mcp_servers.gated_browser.tokens import (
    ChunkingOptions,
    ContentStrategy,
    TokenManager,
    count_tokens_enhanced,
    extract_text_from_html,
)


def _words(n: int) -> str:
    # "word " costs 1 token plus a tenth of a whitespace token.
    return "word " * n


def test_count_tokens_empty_and_small() -> None:
    tm = TokenManager()
    assert tm.count_tokens("") == 0
    assert tm.count_tokens("hello world") == 4
    assert tm.count_tokens(_words(1000)) == 1100


def test_html_costs_more_than_its_text() -> None:
    html = '<div class="card"><p>Hello <b>world</b></p></div>' * 50
    text = extract_text_from_html(html)
    assert count_tokens_enhanced(html, "html") > count_tokens_enhanced(text, "text")


def test_strict_validate_tiers() -> None:
    tm = TokenManager()

    at_emergency = tm.strict_validate_for_mcp(_words(20000))
    assert at_emergency.token_count == 22000
    assert at_emergency.is_valid and at_emergency.action == "allow"
    assert at_emergency.message is None

    near_safe = tm.strict_validate_for_mcp(_words(20001))
    assert near_safe.is_valid and near_safe.action == "allow"
    assert near_safe.message == "Within safe limits but close to threshold"

    over_safe = tm.strict_validate_for_mcp(_words(21000))
    assert not over_safe.is_valid and over_safe.action == "truncate"

    over_max = tm.strict_validate_for_mcp(_words(23000))
    assert not over_max.is_valid and over_max.action == "reject"
    assert "exceeds MCP maximum (25000)" in (over_max.message or "")


def test_emergency_truncate_fits_and_marks() -> None:
    tm = TokenManager()
    truncated = tm.emergency_truncate(_words(23000), "text")
    assert truncated.endswith("[Content truncated due to token limits]")
    assert tm.strict_validate_for_mcp(truncated).action == "allow"

    small = "short text"
    assert tm.emergency_truncate(small) == small

    html = "<p>" + _words(30000) + "</p>"
    assert tm.emergency_truncate(html, "html").endswith("<!-- Content truncated due to token limits -->")


def test_fixed_chunking_indices_are_contiguous() -> None:
    tm = TokenManager()
    content = _words(50000)
    chunks = tm.chunk_content(content, tm.default_chunking(), "text")

    assert len(chunks) == 4
    assert [c.chunk_index for c in chunks] == list(range(len(chunks)))
    assert all(c.total_chunks == len(chunks) for c in chunks)
    assert all(c.token_count <= 20000 for c in chunks)
    # Overlap adds a little, never orders of magnitude.
    total = sum(c.token_count for c in chunks)
    whole = tm.count_tokens(content)
    assert whole <= total < whole * 1.5


def test_semantic_chunking_keeps_paragraphs() -> None:
    tm = TokenManager()
    paragraphs = [_words(3000).strip() for _ in range(10)]
    chunks = tm.chunk_content("\n\n".join(paragraphs), tm.default_chunking(), "text")

    assert len(chunks) == 2
    assert not chunks[0].has_overlap
    assert chunks[1].has_overlap
    assert chunks[0].context_info == f"Chunk 1, ~{chunks[0].token_count} tokens"


def test_html_sections_chunk_on_structure() -> None:
    tm = TokenManager()
    section = "<section><p>" + _words(2000).strip() + "</p></section>"
    html = "\n".join([section] * 6)
    chunks = tm.chunk_content(html, ChunkingOptions(max_tokens_per_chunk=5000, overlap_tokens=0), "html")

    assert len(chunks) >= 2
    assert all(c.content.startswith("<section>") for c in chunks)
    assert [c.chunk_index for c in chunks] == list(range(len(chunks)))


def test_validate_content_size_prefers_text_fallback_for_markup_heavy_html() -> None:
    tm = TokenManager()
    html = '<span data-x="1"></span>' * 5000 + "<p>Only a little visible text</p>"
    check = tm.validate_content_size(html, "html")
    assert check.exceeds_limit
    assert check.recommended_strategy == ContentStrategy.FALLBACK_TEXT

    processed = tm.process_content(html, "html")
    assert processed.strategy == ContentStrategy.FALLBACK_TEXT
    assert processed.content == "Only a little visible text"
    assert processed.metadata.compression_ratio is not None
    assert processed.metadata.compression_ratio < 0.01


def test_validate_content_size_chunks_large_text() -> None:
    tm = TokenManager()
    check = tm.validate_content_size(_words(30000), "text")
    assert check.recommended_strategy == ContentStrategy.CHUNKED_TEXT
    assert check.estimated_chunks == 2


def test_process_content_chunked_reports_chunks() -> None:
    tm = TokenManager()
    processed = tm.process_content(_words(30000), "text")
    assert processed.is_chunked
    assert processed.metadata.chunks == len(processed.content)
    assert processed.metadata.original_tokens == 33000


def test_compare_token_counting_methods() -> None:
    tm = TokenManager()
    result = tm.compare_token_counting_methods(_words(100))
    assert result.enhanced == 110
    assert result.difference == result.enhanced - result.legacy
    assert result.recommendation
    assert set(result.to_dict()) == {"enhanced", "legacy", "difference", "percentageDifference", "recommendation"}


def test_legacy_counting_toggle() -> None:
    tm = TokenManager()
    assert tm.token_counting_config()["method"] == "pattern-based"
    tm.set_enhanced_token_counting(False)
    assert tm.token_counting_config() == {"enhancedEnabled": False, "method": "approximation", "accuracy": "75-80%"}
    assert tm.count_tokens(_words(100)) != 110


def test_token_summary_mentions_strategy() -> None:
    tm = TokenManager(TokenBudget())
    summary = tm.token_summary(_words(10))
    assert summary.startswith("Token Management Summary:")
    assert "- Selected Strategy: FULL_TEXT" in summary
    assert "- MCP Compliance: COMPLIANT" in summary
def test_content_within_budget_is_one_trimmed_chunk_for_every_strategy() -> None:
    tm = TokenManager()
    for strategy in ("semantic", "fixed", "hybrid"):
        chunks = tm.chunk_content("  hello world  ", ChunkingOptions(max_tokens_per_chunk=100, strategy=strategy), "text")
        assert [c.content for c in chunks] == ["hello world"], strategy
        assert (chunks[0].chunk_index, chunks[0].total_chunks) == (0, 1)

    # Long words cost fewer tokens than their length suggests; still one chunk.
    long_words = " ".join(["abcdefghijkl"] * 100)
    assert tm.count_tokens(long_words) <= 200
    chunks = tm.chunk_content(long_words, ChunkingOptions(max_tokens_per_chunk=200, strategy="fixed"), "text")
    assert [c.content for c in chunks] == [long_words]

    assert tm.chunk_content("   ", ChunkingOptions(max_tokens_per_chunk=100), "text") == []


def test_fixed_chunks_share_overlap_text() -> None:
    tm = TokenManager()
    content = " ".join(f"w{i}" for i in range(2000))
    chunks = tm.chunk_content(
        content, ChunkingOptions(max_tokens_per_chunk=500, overlap_tokens=50, strategy="fixed"), "text"
    )

    assert len(chunks) > 2
    assert [c.has_overlap for c in chunks] == [False] + [True] * (len(chunks) - 1)
    for previous, following in zip(chunks, chunks[1:]):
        tail = " ".join(previous.content.split()[-5:])
        assert tail in following.content
        assert following.content == following.content.strip()
    assert chunks[-1].content.endswith("w1999")


def test_semantic_overlap_never_exceeds_chunk_budget() -> None:
    tm = TokenManager()
    paragraphs = "\n\n".join(_words(95).strip() for _ in range(3))

    chunks = tm.chunk_content(paragraphs, ChunkingOptions(max_tokens_per_chunk=110, overlap_tokens=20), "text")

    assert len(chunks) == 3
    assert all(c.token_count <= 110 for c in chunks)
    # No room for an overlap next to a 105-token paragraph.
    assert not any(c.has_overlap for c in chunks)


def test_hybrid_matches_semantic_and_falls_back_to_fixed(monkeypatch: pytest.MonkeyPatch) -> None:
    tm = TokenManager()
    content = "\n\n".join(_words(300).strip() for _ in range(4))

    def options(strategy: str) -> ChunkingOptions:
        return ChunkingOptions(max_tokens_per_chunk=700, overlap_tokens=20, strategy=strategy)

    semantic = [c.content for c in tm.chunk_content(content, options("semantic"), "text")]
    fixed = [c.content for c in tm.chunk_content(content, options("fixed"), "text")]
    assert [c.content for c in tm.chunk_content(content, options("hybrid"), "text")] == semantic

    def broken(self: TokenManager, content: str, options: ChunkingOptions, content_type: str) -> list:
        raise RuntimeError("segmenter failed")

    monkeypatch.setattr(TokenManager, "_semantic_chunks", broken)
    hybrid = tm.chunk_content(content, options("hybrid"), "text")
    assert [c.content for c in hybrid] == fixed
    assert [c.chunk_index for c in hybrid] == list(range(len(hybrid)))

    with pytest.raises(RuntimeError):
        tm.chunk_content(content, options("semantic"), "text")


def test_non_ascii_and_astral_characters() -> None:
    tm = TokenManager()
    assert tm.count_tokens("é") == 4
    # Emoji are two UTF-16 code units, each costed like a non-ASCII character.
    assert tm.count_tokens("😀") == 7
