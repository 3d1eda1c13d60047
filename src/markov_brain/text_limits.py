from __future__ import annotations

__all__ = ["shorten"]


def shorten(text: str, max_length: int) -> str:
    """
    Trim ``text`` to at most ``max_length`` characters without splitting a word.

    When the character right after the cut is not a space the trailing partial
    word is dropped. A single word longer than the limit is hard-cut.
    """
    if max_length <= 0:
        return ""
    if len(text) <= max_length:
        return text
    out = text[:max_length]
    if text[max_length] != " ":
        head, sep, _partial = out.rpartition(" ")
        if sep:
            out = head
    return out
