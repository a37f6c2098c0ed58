"""
Tests for catalog matching: normalization, keywords, similarity, lookups.
"""

from unittest.mock import MagicMock

import pytest

from cigar_scanner.models.records import CatalogEntry
from cigar_scanner.normalization import catalog_key, generate_search_keywords, normalize_name
from cigar_scanner.services.catalog_matcher import CatalogMatcher, calculate_similarity
from cigar_scanner.services.result_cache import ResultCache


def _entry(brand, name, entry_id=1):
    return CatalogEntry(
        id=entry_id,
        brand=brand,
        name=name,
        normalized_brand=normalize_name(brand),
        normalized_name=normalize_name(name),
        search_keywords=generate_search_keywords(brand, name),
    )


@pytest.fixture
def cache():
    return ResultCache(max_size=10, ttl_seconds=300)


@pytest.fixture
def matcher(store, cache):
    return CatalogMatcher(store, cache)


class TestNormalization:
    """Test name normalization and keyword generation."""

    @pytest.mark.parametrize("raw,expected", [
        ("Montecristo No.2", "montecristono2"),
        ("  Romeo y Julieta ", "romeoyjulieta"),
        ("Partagás", "partagas"),
        ("CAO - Flathead", "caoflathead"),
        ("", ""),
    ])
    def test_normalize_name(self, raw, expected):
        assert normalize_name(raw) == expected

    def test_catalog_key(self):
        assert catalog_key("Cohiba", "Cohiba Robusto") == "cohiba_cohibarobusto"

    def test_keywords_order_and_content(self):
        keywords = generate_search_keywords("Cohiba", "Cohiba Robusto")

        assert keywords[:4] == [
            "cohiba",
            "cohibarobusto",
            "cohibacohibarobusto",
            "cohiba-cohibarobusto",
        ]
        assert "robusto" in keywords
        assert len(keywords) == len(set(keywords))

    def test_short_words_skipped(self):
        keywords = generate_search_keywords("Romeo y Julieta", "Romeo y Julieta No 2")

        assert "y" not in keywords
        assert "no" not in keywords
        assert "julieta" in keywords

    def test_word_length_counted_before_normalizing(self):
        keywords = generate_search_keywords("Montecristo", "Montecristo No. 2")

        assert "no" in keywords
        assert "2" not in keywords


class TestSimilarity:
    """Test the linear similarity score."""

    def test_identical_scores_one(self):
        entry = _entry("Cohiba", "Cohiba Robusto")
        assert calculate_similarity("Cohiba", "Cohiba Robusto", entry) == 1.0

    def test_partial_brand_and_name(self):
        entry = _entry("Romeo y Julieta", "Romeo y Julieta Churchill Tubos")

        # brand contains (+30), name contains (+20), 3 keywords (+15)
        score = calculate_similarity("Romeo", "Romeo y Julieta Churchill", entry)

        assert score == pytest.approx(0.65)

    def test_keyword_bonus_capped(self):
        entry = CatalogEntry(
            brand="X", name="Y",
            normalized_brand="other", normalized_name="different",
            search_keywords=generate_search_keywords("Arturo Fuente", "Arturo Fuente Hemingway Short Story"),
        )

        score = calculate_similarity("Arturo Fuente", "Arturo Fuente Hemingway Short Story", entry)

        assert score == pytest.approx(0.20)

    def test_empty_input_brand_gets_no_containment_bonus(self):
        entry = _entry("Cohiba", "Cohiba Robusto")

        score = calculate_similarity("", "Nothing Alike", entry)

        assert score == 0.0

    def test_score_never_exceeds_one(self):
        entry = _entry("Padron", "Padron 1964 Anniversary Series Torpedo Maduro")
        assert calculate_similarity("Padron", "Padron 1964 Anniversary Series Torpedo Maduro", entry) <= 1.0


class TestExactMatch:
    """Test exact lookups."""

    @pytest.mark.parametrize("brand,name", [
        ("Montecristo", "Montecristo No.2"),
        ("MONTECRISTO", "montecristo no.2"),
        ("  Montecristo ", "Montecristo  No 2"),
        ("Monte-cristo", "Montecristo No-2!"),
    ])
    def test_normalization_variants_find_same_entry(self, matcher, montecristo_no2, brand, name):
        assert matcher.find_exact(brand, name).id == montecristo_no2.id

    def test_no_match(self, matcher, montecristo_no2):
        assert matcher.find_exact("Montecristo", "Montecristo No.4") is None

    def test_empty_name(self, matcher, montecristo_no2):
        assert matcher.find_exact("Montecristo", "") is None


class TestFuzzyMatch:
    """Test keyword fuzzy lookups."""

    def test_finds_reordered_name(self, matcher, store):
        store.create(CatalogEntry(brand="Padron", name="Padron 1964 Anniversary Torpedo"))

        match = matcher.find_fuzzy("Padron", "Padron Torpedo 1964 Anniversary")

        assert match is not None
        assert match.entry.name == "Padron 1964 Anniversary Torpedo"
        # brand exact (+50) plus keyword overlap capped (+20)
        assert match.similarity == pytest.approx(0.70)

    def test_no_shared_keywords(self, matcher, montecristo_no2):
        assert matcher.find_fuzzy("Oliva", "Oliva Serie V") is None

    def test_queries_at_most_ten_keywords(self):
        store = MagicMock()
        store.find_by_keywords.return_value = []
        matcher = CatalogMatcher(store)

        matcher.find_fuzzy("Arturo Fuente", "Arturo Fuente Opus X Perfecxion Number Five Reserva Maduro Edition")

        keywords = store.find_by_keywords.call_args[0][0]
        assert len(keywords) == 10

    def test_highest_score_wins(self):
        weak = _entry("Cohiba", "Cohiba Siglo VI", entry_id=1)
        strong = _entry("Cohiba", "Cohiba Robusto", entry_id=2)
        store = MagicMock()
        store.find_by_keywords.return_value = [weak, strong]

        match = CatalogMatcher(store).find_fuzzy("Cohiba", "Cohiba Robusto")

        assert match.entry.id == 2

    def test_ties_break_on_lowest_id(self):
        first = _entry("Cohiba", "Cohiba Robusto", entry_id=7)
        second = _entry("Cohiba", "Cohiba Robusto", entry_id=3)
        store = MagicMock()
        store.find_by_keywords.return_value = [first, second]

        match = CatalogMatcher(store).find_fuzzy("Cohiba", "Cohiba Robusto")

        assert match.entry.id == 3


class TestGetDetails:
    """Test the composed cache -> exact -> fuzzy lookup."""

    def test_exact_hit_is_cached(self, matcher, cache, montecristo_no2):
        entry = matcher.get_details("Montecristo", "Montecristo No.2")

        assert entry.id == montecristo_no2.id
        assert cache.get("Montecristo", "Montecristo No.2").id == montecristo_no2.id

    def test_cache_short_circuits_store(self, cache, montecristo_no2):
        store = MagicMock()
        cache.set("Montecristo", "Montecristo No.2", montecristo_no2)

        entry = CatalogMatcher(store, cache).get_details("Montecristo", "Montecristo No.2")

        assert entry.id == montecristo_no2.id
        store.find_by_key.assert_not_called()
        store.find_by_keywords.assert_not_called()

    def test_fuzzy_below_threshold_rejected(self, matcher, store):
        store.create(CatalogEntry(brand="Padron", name="Padron 1964 Anniversary Torpedo"))

        # similarity 0.70 < 0.80
        assert matcher.get_details("Padron", "Padron Torpedo 1964 Anniversary") is None

    def test_fuzzy_at_threshold_accepted(self, matcher, store, cache):
        created, _ = store.create(CatalogEntry(brand="Cohiba", name="Cohiba Siglo VI Tubos"))

        # brand +50, name contained +20, two shared keywords +10 -> 0.80
        entry = matcher.get_details("Cohiba", "Cohiba Siglo VI")

        assert entry.id == created.id
        assert cache.get("Cohiba", "Cohiba Siglo VI") is not None

    def test_never_accepts_below_threshold(self):
        weak = _entry("Cohibas", "Something Else Entirely", entry_id=1)
        store = MagicMock()
        store.find_by_key.return_value = None
        store.find_by_keywords.return_value = [weak]

        assert CatalogMatcher(store).get_details("Cohiba", "Cohiba Robusto") is None

    def test_invalidate(self, matcher, cache, montecristo_no2):
        matcher.get_details("Montecristo", "Montecristo No.2")
        matcher.invalidate("Montecristo", "Montecristo No.2")

        assert cache.get("Montecristo", "Montecristo No.2") is None

    def test_invalidate_whole_brand(self, matcher, cache, montecristo_no2):
        matcher.get_details("Montecristo", "Montecristo No.2")
        cache.set("Montecristo", "Monte 2", montecristo_no2)
        cache.set("Cohiba", "Cohiba Robusto", montecristo_no2)

        matcher.invalidate("Montecristo")

        assert cache.get("Montecristo", "Monte 2") is None
        assert cache.get("Montecristo", "Montecristo No.2") is None
        assert cache.get("Cohiba", "Cohiba Robusto") is not None
