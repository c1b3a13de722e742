"""Tests for name, institute and percentage normalization."""

from vericred.normalization import (
    canonical_triple,
    corpus_hash,
    normalize_institute,
    normalize_name,
    normalize_percentage,
    normalize_text,
)


class TestNormalizeName:
    def test_reorders_last_first(self):
        assert normalize_name("Doe,  Jane") == "jane doe"

    def test_strips_honorifics(self):
        assert normalize_name("Dr. Jane Doe") == "jane doe"
        assert normalize_name("Mrs Jane   Doe") == "jane doe"

    def test_empty(self):
        assert normalize_name(None) == ""
        assert normalize_name("   ") == ""


class TestNormalizeInstitute:
    def test_strips_suffix_words(self):
        assert normalize_institute("ABC College") == "abc"
        assert normalize_institute("Greenfield Institute of Technology") == "greenfield of technology"

    def test_punctuation_and_whitespace(self):
        assert normalize_institute("St. Mary's   School") == "st mary s"

    def test_centre_and_center(self):
        assert normalize_institute("Learning Centre") == normalize_institute("Learning Center") == "learning"


class TestNormalizePercentage:
    def test_keeps_digits_period_minus(self):
        assert normalize_percentage("72.5 %") == "72.5"
        assert normalize_percentage("Score: -3") == "-3"

    def test_numbers(self):
        assert normalize_percentage(85) == "85"
        assert normalize_percentage(None) == ""


class TestCorpusHash:
    def test_equivalent_spellings_hash_equal(self):
        """Formatting differences must not change the exact-match fingerprint."""
        a = corpus_hash("Doe, Jane", "ABC College", "72%")
        b = corpus_hash("jane  doe", "abc", "72")
        assert a == b

    def test_hash_format(self):
        digest = corpus_hash("Jane Doe", "ABC College", "72")
        assert digest.startswith("0x")
        assert len(digest) == 66

    def test_canonical_triple(self):
        assert canonical_triple("Dr. Jane Doe", "ABC College", "72%") == "jane doe|abc|72"

    def test_normalize_text(self):
        assert normalize_text("  Jane\n\tDOE  ") == "jane doe"
