from __future__ import annotations

import re
from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Protocol, Sequence

WORD = "w"
PUNCTUATION = "p"
URL = "u"
HASHTAG = "#"
MENTION = "@"
UNKNOWN = "_"

TOKEN_KINDS: FrozenSet[str] = frozenset({WORD, PUNCTUATION, URL, HASHTAG, MENTION, UNKNOWN})

# Spacing hints: how a token glues to its neighbours when composed.
SPACED = 0
ATTACH_PREVIOUS = 1  # closing punctuation: no space before
ATTACH_NEXT = 2  # opening punctuation: no space after

FRAGMENT_PATTERN = re.compile(r"\S+")
URL_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*://")
# Punctuation follows C ispunct(): every non-word, non-space char plus "_".
AFFIX_PATTERN = re.compile(r"^((?:[^\w\s]|_)*)(.*?)((?:[^\w\s]|_)*)$", re.DOTALL)


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    spacing: int = SPACED


class SpacedToken(Protocol):
    text: str
    spacing: int


def _is_plain_word(word: str) -> bool:
    """Lowercase or Capitalized words (``hello``, ``Hello``, ``don't``)."""
    body = word[1:] if word[:1].isupper() else word
    if not body:
        return False
    return all(ch.islower() or ch.isdigit() or ch in "_'" for ch in body)


def _is_raw_word(word: str) -> bool:
    """UPPERCASE or MiXeD words, kept verbatim."""
    return bool(word) and all(ch.isalnum() or ch in "_'" for ch in word)


class Tokenizer:
    """Whitespace/affix tokenizer that tags every unit with a kind and a spacing hint."""

    def parse(self, text: str) -> List[Token]:
        tokens: List[Token] = []
        for match in FRAGMENT_PATTERN.finditer(text or ""):
            fragment = match.group(0)
            if URL_PATTERN.match(fragment):
                tokens.append(Token(URL, fragment))
                continue
            affix = AFFIX_PATTERN.match(fragment)
            assert affix is not None
            prefix, word, suffix = affix.groups()
            core = self._core_token(prefix, word)
            if core is not None and core.kind in (HASHTAG, MENTION):
                prefix = prefix[:-1]
            if prefix:
                tokens.append(Token(PUNCTUATION, prefix, ATTACH_NEXT if core else SPACED))
            if core is not None:
                tokens.append(core)
            if suffix:
                tokens.append(Token(PUNCTUATION, suffix, ATTACH_PREVIOUS))
        return tokens

    @staticmethod
    def _core_token(prefix: str, word: str) -> Token | None:
        if not word:
            return None
        if prefix[-1:] in (HASHTAG, MENTION):
            marker = prefix[-1]
            return Token(marker, marker + word)
        if _is_plain_word(word):
            return Token(WORD, word.lower())
        if _is_raw_word(word):
            return Token(WORD, word)
        return Token(UNKNOWN, word)

    def compose(self, tokens: Sequence[SpacedToken]) -> str:
        pieces: List[str] = []
        last = len(tokens) - 1
        for idx, token in enumerate(tokens):
            pieces.append(token.text)
            if idx < last and token.spacing != ATTACH_NEXT and tokens[idx + 1].spacing != ATTACH_PREVIOUS:
                pieces.append(" ")
        return "".join(pieces)


def parse_filter(spec: str | None) -> FrozenSet[str] | None:
    """Turn a string of kind letters such as ``"up#"`` into a filter set."""
    kinds = frozenset(ch for ch in (spec or "") if ch in TOKEN_KINDS)
    return kinds or None


def filter_tokens(tokens: Iterable[Token], kinds: FrozenSet[str] | None) -> List[Token]:
    if not kinds:
        return list(tokens)
    return [token for token in tokens if token.kind not in kinds]


__all__ = [
    "ATTACH_NEXT",
    "ATTACH_PREVIOUS",
    "HASHTAG",
    "MENTION",
    "PUNCTUATION",
    "SPACED",
    "TOKEN_KINDS",
    "Token",
    "Tokenizer",
    "UNKNOWN",
    "URL",
    "WORD",
    "filter_tokens",
    "parse_filter",
]
