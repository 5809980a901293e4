"""Analyzer utilities for the in-memory search backend.

Mirrors the behavior of a typical "standard + english" analyzer closely
enough for ranking tests: word tokenization, lowercasing, stopword removal
and light suffix stemming. Stopwords are dropped without renumbering the
remaining positions, so phrase distances match what a real engine reports.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass
import re


@dataclass(frozen=True)
class Token:
    """A term emitted by an analyzer, with its position in the source text."""

    text: str
    position: int


DEFAULT_STOPWORDS = frozenset(
    {
        "a",
        "an",
        "and",
        "are",
        "as",
        "at",
        "be",
        "but",
        "by",
        "for",
        "if",
        "in",
        "into",
        "is",
        "it",
        "no",
        "not",
        "of",
        "on",
        "or",
        "such",
        "that",
        "the",
        "their",
        "then",
        "there",
        "these",
        "they",
        "this",
        "to",
        "was",
        "will",
        "with",
    }
)

_WORD_PATTERN = re.compile(r"[\w']+", re.UNICODE)

_SUFFIX_RULES: tuple[tuple[str, str], ...] = (
    ("ization", "ize"),
    ("ational", "ate"),
    ("fulness", "ful"),
    ("ousness", "ous"),
    ("iveness", "ive"),
    ("tional", "tion"),
    ("ation", "ate"),
    ("ness", ""),
    ("ment", ""),
)

_SIMPLE_SUFFIXES: tuple[str, ...] = ("ingly", "edly", "ing", "ed", "ly", "es", "s")


def tokenize(text: str) -> Iterator[Token]:
    """Split text into word tokens numbered by position."""
    for position, match in enumerate(_WORD_PATTERN.finditer(text)):
        yield Token(text=match.group(0), position=position)


def lowercase(tokens: Iterable[Token]) -> Iterator[Token]:
    for token in tokens:
        yield token if token.text.islower() else Token(token.text.lower(), token.position)


def remove_stopwords(tokens: Iterable[Token], stopwords: frozenset[str] = DEFAULT_STOPWORDS) -> Iterator[Token]:
    for token in tokens:
        if token.text not in stopwords:
            yield token


def stem(word: str) -> str:
    """Strip one common English suffix, keeping at least two characters."""
    for suffix, replacement in _SUFFIX_RULES:
        if word.endswith(suffix) and len(word) - len(suffix) >= 2:
            return word[: -len(suffix)] + replacement
    for suffix in _SIMPLE_SUFFIXES:
        if word.endswith(suffix) and len(word) - len(suffix) >= 2:
            return word[: -len(suffix)]
    return word


def apply_stemming(tokens: Iterable[Token]) -> Iterator[Token]:
    for token in tokens:
        yield Token(stem(token.text), token.position)


class StandardAnalyzer:
    """Tokenize, lowercase, drop stopwords and optionally stem."""

    def __init__(self, *, stopwords: Sequence[str] | None = None, apply_stem: bool = True) -> None:
        self.stopwords = frozenset(word.lower() for word in stopwords) if stopwords is not None else DEFAULT_STOPWORDS
        self.apply_stem = apply_stem

    def __call__(self, text: str) -> list[Token]:
        stream: Iterable[Token] = remove_stopwords(lowercase(tokenize(text)), self.stopwords)
        if self.apply_stem:
            stream = apply_stemming(stream)
        return list(stream)


class KeywordAnalyzer:
    """Treat the entire input as one exact token."""

    def __call__(self, text: str) -> list[Token]:
        if not text:
            return []
        return [Token(text=text, position=0)]


_ANALYZER_FACTORIES: dict[str, Callable[[], Callable[[str], list[Token]]]] = {
    "standard": StandardAnalyzer,
    "english-nostem": lambda: StandardAnalyzer(apply_stem=False),
    "keyword": KeywordAnalyzer,
}


def get_analyzer(name: str | None) -> Callable[[str], list[Token]]:
    """Return analyzer by name, defaulting to the standard analyzer."""

    normalized = (name or "standard").lower()
    if normalized not in _ANALYZER_FACTORIES:
        msg = f"Unknown analyzer '{name}'. Available: {sorted(_ANALYZER_FACTORIES)}"
        raise ValueError(msg)
    return _ANALYZER_FACTORIES[normalized]()
