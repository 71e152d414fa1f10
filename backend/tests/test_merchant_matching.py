"""
Tests for merchant normalization, edit-distance similarity and catalog matching.
"""
from uuid import uuid4

from subtracker.services.catalog_matcher import CatalogEntry, CatalogMatcher
from subtracker.services.merchant_normalizer import normalize_merchant_name
from subtracker.services.text_similarity import string_similarity


def test_corporate_suffix_variants_normalize_together():
    assert normalize_merchant_name("Netflix, Inc.") == "netflix"
    assert normalize_merchant_name("NETFLIX INC.") == "netflix"
    assert normalize_merchant_name("Netflix, Inc.") == normalize_merchant_name("NETFLIX INC.")


def test_normalize_strips_punctuation_and_collapses_whitespace():
    assert normalize_merchant_name("  Spotify   USA  LLC ") == "spotify usa"
    assert normalize_merchant_name("Disney+") == "disney"
    assert normalize_merchant_name("AMZ*Prime Video") == "amzprime video"


def test_normalize_keeps_suffix_letters_inside_words():
    # "inc" only goes when it stands alone
    assert normalize_merchant_name("Incredible Gym Company") == "incredible gym"
    assert normalize_merchant_name("Corporate Cafe") == "corporate cafe"


def test_normalize_empty_inputs():
    assert normalize_merchant_name("") == ""
    assert normalize_merchant_name(None) == ""
    assert normalize_merchant_name("***") == ""


def test_similarity_scales_edit_distance_by_longer_string():
    # kitten -> sitting is three edits over seven characters
    assert round(string_similarity("kitten", "sitting"), 2) == 57.14
    assert string_similarity("", "abc") == 0.0
    assert string_similarity("abc", "") == 0.0
    assert string_similarity("SPOTIFY", "spotify") == 100.0


def test_string_similarity_bounds():
    assert string_similarity("", "") == 100.0
    assert string_similarity("Netflix", " netflix ") == 100.0
    assert string_similarity("abc", "xyz") == 0.0
    score = string_similarity("spotifx", "spotify")
    assert 85.0 < score < 86.0, f"Expected ~85.7, got {score}"


def _entry(name, patterns):
    return CatalogEntry.build(id=uuid4(), name=name, merchant_patterns=patterns)


def test_catalog_entry_drops_patterns_that_normalize_to_nothing():
    entry = _entry("Netflix", ["NETFLIX", "Netflix.com", "***"])
    assert entry.normalized_patterns == ("netflix", "netflixcom")


def test_pattern_substring_is_a_full_match():
    netflix = _entry("Netflix", ["NETFLIX"])
    matcher = CatalogMatcher([_entry("Spotify", ["SPOTIFY"]), netflix])

    match = matcher.match("NETFLIX.COM 866-579-7172")
    assert match.service == netflix
    assert match.score == 100.0


def test_fuzzy_match_picks_best_service():
    spotify = _entry("Spotify", ["SPOTIFY"])
    matcher = CatalogMatcher([_entry("Netflix", ["NETFLIX"]), spotify])

    match = matcher.match("Spotifx")
    assert match.service == spotify
    assert 85.0 < match.score < 86.0


def test_no_catalog_means_no_match():
    match = CatalogMatcher([]).match("Netflix")
    assert match.service is None
    assert match.score == 0.0


def test_display_name_is_compared_as_written():
    # "Disney+" keeps its plus sign; only case and surrounding spaces are ignored
    disney = _entry("Disney+", ["DISNEYPLUS"])
    matcher = CatalogMatcher([disney])

    match = matcher.match("Disney")
    assert match.service == disney
    assert 85.0 < match.score < 86.0, f"Expected ~85.7, got {match.score}"
