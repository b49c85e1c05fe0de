"""Text normalisation and similarity helpers shared by scoring, embedding and search."""

import re
from collections.abc import Sequence

import numpy as np

# Word characters plus the CJK Unified Ideographs block
_NON_TEXT = re.compile(r"[^\w\u4e00-\u9fff]+")
_CJK_RUN = re.compile(r"[\u4e00-\u9fff]+")
_SENTENCE_SPLIT = re.compile(r"[.!?。！？]+")


def normalize(text: str) -> str:
    """Lower-case, replace punctuation with spaces and collapse whitespace."""
    return " ".join(_NON_TEXT.sub(" ", text.lower()).split())


def tokenize(text: str) -> list[str]:
    """Whitespace tokens of the normalised text; CJK runs are split into characters."""
    tokens: list[str] = []
    for word in normalize(text).split():
        if _CJK_RUN.fullmatch(word):
            tokens.extend(word)
        else:
            tokens.append(word)
    return tokens


def split_sentences(text: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_SPLIT.split(text) if s.strip()]


def jaccard(a: str, b: str) -> float:
    """Token-set overlap ratio in [0, 1]."""
    set_a, set_b = set(tokenize(a)), set(tokenize(b))
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


def query_coverage(query: str, text: str) -> float:
    """Fraction of distinct query tokens that occur in ``text``."""
    wanted = set(tokenize(query))
    if not wanted:
        return 0.0
    return len(wanted & set(tokenize(text))) / len(wanted)


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """Cosine of two vectors; 0 for empty, zero-norm or mismatched dimensions."""
    if a is None or b is None or len(a) == 0 or len(a) != len(b):
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))
