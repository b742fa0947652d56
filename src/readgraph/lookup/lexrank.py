"""Extractive term context: LexRank over a TF-IDF cosine sentence graph."""

from __future__ import annotations

from dataclasses import dataclass
import math
import re
from typing import Sequence

import numpy as np
from razdel import sentenize


STOPWORDS: dict[str, frozenset[str]] = {
    "en": frozenset(
        "a an and are as at be by for from has he in is it its of on that the to was were will with".split()
    ),
    "fr": frozenset("de la le les des et en un une du au".split()),
    "es": frozenset("de la el los las y en un una del al".split()),
    "de": frozenset("der die das und ein eine im in zu mit".split()),
    "it": frozenset("di la il lo gli le e un una in da".split()),
    "pt": frozenset("de da do das dos e em um uma para".split()),
    "nl": frozenset("de het een en van in op te voor".split()),
}

SIMILARITY_THRESHOLD = 0.1
DAMPING = 0.85
MAX_ITERATIONS = 20
POSITION_BOOST = 0.12
TERM_BOOST = 1.18

_CJK_RE = re.compile(r"[\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uac00-\ud7af]")
_CJK_SENTENCE_RE = re.compile(r"[^\n\r\f\v\u3002\uff01\uff1f]+[\n\r\f\v\u3002\uff01\uff1f]?")
_NON_WORD_RE = re.compile(r"[^\w\s]|_")


@dataclass(slots=True)
class RankedSentence:
    sentence: str
    index: int
    score: float


def _stopwords(language: str) -> frozenset[str]:
    key = (language or "en").lower().split("-")[0]
    return STOPWORDS.get(key, STOPWORDS["en"])


def is_cjk(text: str) -> bool:
    return _CJK_RE.search(text) is not None


def split_sentences(text: str) -> list[str]:
    """Line breaks always end a sentence; sentences of two characters or fewer are dropped."""

    if not text:
        return []
    sentences: list[str] = []
    if is_cjk(text):
        sentences = [match.group(0).strip() for match in _CJK_SENTENCE_RE.finditer(text)]
    else:
        for line in text.splitlines():
            sentences.extend(substring.text.strip() for substring in sentenize(line))
    return [sentence for sentence in sentences if len(sentence) > 2]


def tokenize(sentence: str, language: str = "en") -> list[str]:
    if is_cjk(sentence):
        return [char for char in sentence if char.isalnum()]
    stopwords = _stopwords(language)
    cleaned = _NON_WORD_RE.sub(" ", sentence.lower())
    return [token for token in cleaned.split() if len(token) > 1 and token not in stopwords]


def tfidf_matrix(sentences: Sequence[str], language: str = "en") -> np.ndarray:
    """Row per sentence of ``tf / len * (log((n + 1) / (df + 1)) + 1)`` weights."""

    tokenized = [tokenize(sentence, language) for sentence in sentences]
    vocabulary: dict[str, int] = {}
    document_frequency: dict[str, int] = {}
    for tokens in tokenized:
        for token in set(tokens):
            document_frequency[token] = document_frequency.get(token, 0) + 1
            vocabulary.setdefault(token, len(vocabulary))

    count = len(sentences)
    matrix = np.zeros((count, len(vocabulary)), dtype=np.float64)
    for row, tokens in enumerate(tokenized):
        length = len(tokens) or 1
        for token in tokens:
            idf = math.log((count + 1) / (document_frequency[token] + 1)) + 1
            matrix[row, vocabulary[token]] += idf / length
    return matrix


def lexrank(
    sentences: Sequence[str],
    language: str = "en",
    *,
    threshold: float = SIMILARITY_THRESHOLD,
    damping: float = DAMPING,
    max_iterations: int = MAX_ITERATIONS,
) -> list[float]:
    count = len(sentences)
    if count == 0:
        return []

    vectors = tfidf_matrix(sentences, language)
    norms = np.linalg.norm(vectors, axis=1)
    norms[norms == 0] = 1.0
    unit_vectors = vectors / norms[:, None]
    similarity = unit_vectors @ unit_vectors.T
    np.fill_diagonal(similarity, 0.0)
    similarity[similarity < threshold] = 0.0

    row_sums = similarity.sum(axis=1)
    transition = np.divide(similarity, row_sums[:, None], out=np.zeros_like(similarity), where=row_sums[:, None] > 0)

    scores = np.full(count, 1.0 / count)
    for _ in range(max_iterations):
        scores = (1.0 - damping) / count + damping * (transition.T @ scores)
    return scores.tolist()


def _lower_variants(term_variants: Sequence[str]) -> list[str]:
    return [variant.lower().strip() for variant in term_variants if variant.strip()]


def rank_sentences(text: str, language: str = "en", term_variants: Sequence[str] = ()) -> list[RankedSentence]:
    sentences = split_sentences(text)
    if not sentences:
        return []
    scores = lexrank(sentences, language)
    variants = _lower_variants(term_variants)

    ranked = []
    for index, sentence in enumerate(sentences):
        position_boost = 1 + (1 - index / len(sentences)) * POSITION_BOOST
        lowered = sentence.lower()
        term_boost = TERM_BOOST if variants and any(variant in lowered for variant in variants) else 1.0
        ranked.append(RankedSentence(sentence=sentence, index=index, score=scores[index] * position_boost * term_boost))
    return sorted(ranked, key=lambda item: (-item.score, item.index))


def extract_term_context(
    text: str,
    term_variants: Sequence[str],
    *,
    language: str = "en",
    max_sentences: int = 4,
    context_before: int = 1,
    context_after: int = 1,
    max_chars: int = 1200,
) -> list[str]:
    """Best-ranked sentences mentioning the term, with neighbours, in reading order."""

    sentences = split_sentences(text)
    if not sentences:
        return []
    variants = _lower_variants(term_variants)
    ranked = rank_sentences(text, language, variants)
    picked = [
        item for item in ranked if not variants or any(variant in item.sentence.lower() for variant in variants)
    ][:max_sentences]

    indices: set[int] = set()
    for item in picked:
        for index in range(item.index - context_before, item.index + context_after + 1):
            if 0 <= index < len(sentences):
                indices.add(index)

    result: list[str] = []
    used = 0
    for index in sorted(indices):
        sentence = sentences[index]
        if used + len(sentence) > max_chars:
            break
        result.append(sentence)
        used += len(sentence)
    return result
