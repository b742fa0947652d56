from __future__ import annotations

import pytest

from readgraph.lookup.lexrank import extract_term_context, is_cjk, lexrank, rank_sentences, split_sentences, tokenize


TEXT = (
    "The mill stood at the edge of the valley. "
    "Alice repaired the mill wheel every spring. "
    "Rain fell for days.\n"
    "The mill wheel turned again when Alice finished. "
    "Nobody else came."
)


def test_split_sentences_breaks_on_lines_and_drops_fragments() -> None:
    assert split_sentences("One fine day.\nOk\nAnother line!\n\n..") == ["One fine day.", "Another line!"]
    assert split_sentences("") == []


def test_cjk_text_splits_on_full_stops() -> None:
    text = "爱丽丝来了。她笑了。"

    assert is_cjk(text)
    assert split_sentences(text) == ["爱丽丝来了。", "她笑了。"]


def test_tokenize_drops_stopwords_and_punctuation() -> None:
    assert tokenize("The mill-wheel, and Alice!") == ["mill", "wheel", "alice"]


def test_lexrank_gives_isolated_sentences_the_base_score() -> None:
    sentences = split_sentences(TEXT)

    scores = lexrank(sentences)

    assert len(scores) == len(sentences)
    assert scores[2] == pytest.approx(0.15 / len(sentences))
    assert min(scores[1], scores[3]) > scores[2]
    assert lexrank([]) == []


def test_rank_sentences_prefers_central_sentences_mentioning_the_term() -> None:
    ranked = rank_sentences(TEXT, "en", ["alice"])

    assert "Alice" in ranked[0].sentence
    assert ranked[-1].sentence in {"Rain fell for days.", "Nobody else came."}


def test_extract_term_context_keeps_reading_order_and_neighbours() -> None:
    context = extract_term_context(TEXT, ["alice"], max_sentences=1, context_before=0, context_after=1)

    assert len(context) == 2
    assert "Alice" in context[0]
    assert split_sentences(TEXT).index(context[0]) + 1 == split_sentences(TEXT).index(context[1])


def test_extract_term_context_respects_char_budget_and_missing_terms() -> None:
    assert extract_term_context(TEXT, ["dragon"]) == []
    assert extract_term_context(TEXT, ["alice"], max_chars=10) == []
