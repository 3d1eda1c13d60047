from __future__ import annotations

import unittest

from markov_brain.text_limits import shorten
from markov_brain.tokenizer import (
    ATTACH_NEXT,
    ATTACH_PREVIOUS,
    SPACED,
    Token,
    Tokenizer,
    filter_tokens,
    parse_filter,
)


class TokenizerParseTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tokenizer = Tokenizer()

    def test_words_and_trailing_punctuation(self) -> None:
        self.assertEqual(
            self.tokenizer.parse("Hello, world!"),
            [
                Token("w", "hello"),
                Token("p", ",", ATTACH_PREVIOUS),
                Token("w", "world"),
                Token("p", "!", ATTACH_PREVIOUS),
            ],
        )

    def test_uppercase_and_mixed_words_are_verbatim(self) -> None:
        tokens = self.tokenizer.parse("NASA iPhone Don't")
        self.assertEqual([(t.kind, t.text) for t in tokens], [("w", "NASA"), ("w", "iPhone"), ("w", "don't")])

    def test_urls_are_single_tokens(self) -> None:
        tokens = self.tokenizer.parse("see https://example.org/a?b=1.")
        self.assertEqual(tokens[1], Token("u", "https://example.org/a?b=1."))

    def test_hashtags_and_mentions(self) -> None:
        tokens = self.tokenizer.parse("#python @bob:")
        self.assertEqual(
            tokens,
            [Token("#", "#python"), Token("@", "@bob"), Token("p", ":", ATTACH_PREVIOUS)],
        )

    def test_bare_marker_is_punctuation(self) -> None:
        self.assertEqual(self.tokenizer.parse("#"), [Token("p", "#", SPACED)])

    def test_opening_punctuation_attaches_to_next(self) -> None:
        self.assertEqual(
            self.tokenizer.parse("(hi)"),
            [Token("p", "(", ATTACH_NEXT), Token("w", "hi"), Token("p", ")", ATTACH_PREVIOUS)],
        )

    def test_unknown_fragments(self) -> None:
        self.assertEqual(self.tokenizer.parse("3.14"), [Token("_", "3.14")])

    def test_blank_input(self) -> None:
        self.assertEqual(self.tokenizer.parse("   "), [])
        self.assertEqual(self.tokenizer.parse(""), [])


class TokenizerComposeTests(unittest.TestCase):
    def test_compose_respects_spacing(self) -> None:
        tokenizer = Tokenizer()
        text = 'He said (quietly): "fine".'
        self.assertEqual(tokenizer.compose(tokenizer.parse(text)), 'he said (quietly): "fine".')

    def test_compose_empty(self) -> None:
        self.assertEqual(Tokenizer().compose([]), "")


class FilterTests(unittest.TestCase):
    def test_parse_filter(self) -> None:
        self.assertEqual(parse_filter("up"), frozenset({"u", "p"}))
        self.assertIsNone(parse_filter(""))
        self.assertIsNone(parse_filter(None))
        self.assertIsNone(parse_filter("xyz"))

    def test_filter_tokens_drops_kinds(self) -> None:
        tokens = Tokenizer().parse("hi, @bob")
        self.assertEqual(filter_tokens(tokens, parse_filter("p@")), [Token("w", "hi")])
        self.assertEqual(filter_tokens(tokens, None), tokens)


class ShortenTests(unittest.TestCase):
    def test_cut_drops_partial_word(self) -> None:
        self.assertEqual(shorten("the quick brown fox", 12), "the quick")

    def test_cut_on_word_boundary(self) -> None:
        self.assertEqual(shorten("the quick brown", 9), "the quick")

    def test_short_text_unchanged(self) -> None:
        self.assertEqual(shorten("tiny", 10), "tiny")

    def test_single_long_word_is_hard_cut(self) -> None:
        self.assertEqual(shorten("supercalifragilistic", 5), "super")

    def test_non_positive_limit(self) -> None:
        self.assertEqual(shorten("anything", 0), "")


if __name__ == "__main__":
    unittest.main()
