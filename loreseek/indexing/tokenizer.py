from __future__ import annotations

import re
import unicodedata
from typing import List, Optional

from loreseek.core.config import TokenizationConfig


MAX_NGRAM = 5
STEM_SUFFIXES = ("ing", "ed", "es", "s")

# a token survives only if it holds at least one word or CJK character
_WORD_RE = re.compile(r"[\w\u4e00-\u9fa5]")
_CJK_RE = re.compile(r"[\u4e00-\u9fa5]")

_DEFAULT_CONFIG = TokenizationConfig()


def is_separator(ch: str) -> bool:
    """Whitespace or any Unicode punctuation category (Pc, Pd, Ps, Pe, Pi, Pf, Po)."""
    return ch.isspace() or unicodedata.category(ch).startswith("P")


def _char_ngrams(text: str) -> List[str]:
    chars = list(text)
    # all 1-grams, including separators; the word filter drops those later
    tokens = list(chars)
    for n in range(2, MAX_NGRAM + 1):
        for i in range(len(chars) - n + 1):
            gram = chars[i:i + n]
            if not any(is_separator(c) for c in gram):
                tokens.append("".join(gram))
    return tokens


def _split_words(text: str) -> List[str]:
    tokens: List[str] = []
    current: List[str] = []
    for ch in text:
        if is_separator(ch):
            if current:
                tokens.append("".join(current))
                current = []
        else:
            current.append(ch)
    if current:
        tokens.append("".join(current))
    return tokens


def simple_stem(word: str) -> str:
    # strips at most one suffix, first match wins
    for suffix in STEM_SUFFIXES:
        if word.endswith(suffix):
            return word[: -len(suffix)]
    return word


def tokenize(text: str, config: Optional[TokenizationConfig] = None) -> List[str]:
    """
    Turn text into an ordered list of index terms (repeats kept).

    Chinese text ("zh") yields character 1..5-grams so that exact phrases and
    their sub-phrases both score; other languages split on whitespace and
    punctuation.
    """
    if not text or not isinstance(text, str):
        return []

    config = config or _DEFAULT_CONFIG
    text = text.lower()

    if config.language == "zh":
        tokens = _char_ngrams(text)
    else:
        tokens = _split_words(text)

    if config.stop_words:
        tokens = [t for t in tokens if t not in config.stop_words]

    tokens = [t for t in tokens if _WORD_RE.search(t)]

    if config.stemming and config.language != "zh":
        tokens = [t if _CJK_RE.search(t) else simple_stem(t) for t in tokens]
        tokens = [t for t in tokens if t]

    return tokens
