"""
BM25 Ranking over Character Memories

Keyword-based relevance ranking for MemoryEntry collections. No LLM and no
embedding model: each memory carries a keyword list derived from its content
with the same tokenizer used for queries.

    idf(t)   = ln((N - df + 0.5) / (df + 0.5) + 1)
    score(d) = sum_t idf(t) * tf*(k1+1) / (tf + k1*(1 - b + b*|d|/avgdl))
    final    = score(d) * (0.5 + 0.5 * importance)

Corpus statistics are recomputed in full on every corpus change. Corpora
are small (hundreds of memories), so the engine is cheap to rebuild and is
never a source of truth.
"""

from __future__ import annotations

import math
import re
import unicodedata
from collections import Counter
from typing import Dict, Iterable, List, Sequence, Tuple

from lorectl.types import MemoryEntry

# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------

# Vietnamese + English stop words
STOPWORDS = frozenset({
    # Vietnamese
    "và", "là", "của", "có", "được", "cho", "này", "đó", "với", "trong",
    "từ", "để", "theo", "khi", "nếu", "nhưng", "như", "vì", "do", "bởi",
    "tôi", "bạn", "anh", "chị", "em", "nó", "họ", "chúng", "ta", "mình",
    "một", "các", "những", "cái", "con", "người", "việc", "điều", "chuyện",
    "đã", "đang", "sẽ", "rồi", "rất", "lắm", "quá", "thì", "mà", "hay",
    "cũng", "còn", "nữa", "lại", "ra", "vào", "lên", "xuống", "về",
    # English
    "the", "a", "an", "is", "are", "was", "were", "be", "been", "being",
    "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "must", "shall", "can", "need", "dare",
    "to", "of", "in", "for", "on", "with", "at", "by", "from", "as",
    "i", "you", "he", "she", "it", "we", "they", "me", "him", "her", "us",
    "my", "your", "his", "its", "our", "their", "this", "that", "these",
    "and", "or", "but", "if", "then", "else", "when", "where", "why", "how",
})

_PUNCT_RE = re.compile(r"[.,!?;:()\[\]{}\"'“”‘’]")
_WS_RE = re.compile(r"\s+")

K1 = 1.5  # term frequency saturation
B = 0.75  # length normalization


def tokenize(text: str) -> List[str]:
    """Tokenize text into BM25 terms.

    Steps:
      1. Lowercase
      2. NFC normalization (merges composed/decomposed diacritics)
      3. Punctuation -> space
      4. Split on whitespace
      5. Drop tokens of length <= 1 and stop words

    Duplicates are kept (term frequency matters for queries).
    """
    text = unicodedata.normalize("NFC", text.lower())
    text = _PUNCT_RE.sub(" ", text)
    return [
        w for w in _WS_RE.split(text)
        if len(w) > 1 and w not in STOPWORDS
    ]


def extract_keywords(content: str) -> List[str]:
    """Unique keywords of a memory's content, in first-occurrence order."""
    return list(dict.fromkeys(tokenize(content)))


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class BM25Engine:
    """BM25 search engine over a fixed memory corpus."""

    def __init__(self, memories: Iterable[MemoryEntry] = ()):
        """Build corpus statistics for the given memories."""
        self._memories: List[MemoryEntry] = []
        self._avg_doc_length = 0.0
        self._doc_frequency: Dict[str, int] = {}
        self.set_memories(memories)

    @property
    def size(self) -> int:
        """Number of memories in the corpus."""
        return len(self._memories)

    @property
    def avg_doc_length(self) -> float:
        """Average keyword-list length (0 for an empty corpus)."""
        return self._avg_doc_length

    def doc_frequency(self, term: str) -> int:
        """Number of memories whose keyword set contains term."""
        return self._doc_frequency.get(term, 0)

    def set_memories(self, memories: Iterable[MemoryEntry]) -> None:
        """Replace the corpus and recompute all statistics."""
        self._memories = list(memories)
        self._doc_frequency = {}

        if not self._memories:
            self._avg_doc_length = 0.0
            return

        total = sum(len(m.keywords) for m in self._memories)
        self._avg_doc_length = total / len(self._memories)

        for memory in self._memories:
            for term in set(memory.keywords):
                self._doc_frequency[term] = self._doc_frequency.get(term, 0) + 1

    def idf(self, term: str) -> float:
        """Smoothed BM25 inverse document frequency."""
        n = len(self._memories)
        df = self._doc_frequency.get(term, 0)
        return math.log((n - df + 0.5) / (df + 0.5) + 1)

    def score(self, memory: MemoryEntry, query_terms: Sequence[str]) -> float:
        """BM25 score of one memory, boosted by its importance."""
        doc_length = len(memory.keywords)
        counts = Counter(memory.keywords)
        total = 0.0

        for term in query_terms:
            tf = counts.get(term, 0)
            if tf == 0:
                continue
            if self._avg_doc_length > 0:
                norm = 1 - B + B * (doc_length / self._avg_doc_length)
            else:
                norm = 1 - B
            total += self.idf(term) * (tf * (K1 + 1)) / (tf + K1 * norm)

        return total * (0.5 + 0.5 * memory.importance)

    def search_scored(
        self, query: str, limit: int = 5, min_score: float = 0.5,
    ) -> List[Tuple[MemoryEntry, float]]:
        """Rank memories for query; returns (memory, score) best first.

        Ties keep corpus order (stable sort).
        """
        if not self._memories:
            return []

        query_terms = tokenize(query)
        if not query_terms:
            return []

        scored = [(m, self.score(m, query_terms)) for m in self._memories]
        kept = [pair for pair in scored if pair[1] >= min_score]
        kept.sort(key=lambda pair: pair[1], reverse=True)
        return kept[:max(limit, 0)]

    def search(
        self, query: str, limit: int = 5, min_score: float = 0.5,
    ) -> List[MemoryEntry]:
        """Top `limit` memories scoring at least `min_score` for query."""
        return [m for m, _ in self.search_scored(query, limit, min_score)]
