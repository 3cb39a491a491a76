"""Unit tests for query helpers: synonyms, entity detection and request models."""
from __future__ import annotations

import pytest
from pydantic import ValidationError

from offer_search.domain.value_objects import EntityKind
from offer_search.search import SearchOrchestrator, SearchRequest, SortField
from offer_search.search.entity_detection import EntityDetector, EntityPattern
from offer_search.search.synonyms import SYNONYMS, SynonymExpander


class TestSynonymExpander:

    def setup_method(self) -> None:
        self.expander = SynonymExpander()

    def test_expands_known_term_in_order(self) -> None:
        assert self.expander.expand("car") == ["car", "vehicle", "automobile", "auto"]

    def test_unknown_terms_pass_through(self) -> None:
        assert self.expander.expand("honda civic") == ["honda", "civic"]

    def test_duplicates_are_dropped_case_insensitively(self) -> None:
        # "car" expands to "vehicle", so the second term adds nothing new.
        assert self.expander.expand("car Vehicle") == ["car", "vehicle", "automobile", "auto"]

    def test_lookup_is_case_insensitive(self) -> None:
        assert self.expander.expand("Truck") == ["Truck", "pickup", "lorry"]

    def test_multi_word_synonyms_are_kept_whole(self) -> None:
        assert "sport utility vehicle" in self.expander.expand("suv")

    def test_empty_query(self) -> None:
        assert self.expander.expand("") == []
        assert self.expander.expand_query("   ") == ""

    def test_expand_query_joins_terms(self) -> None:
        assert self.expander.expand_query("red truck") == "red truck pickup lorry"

    def test_custom_table(self) -> None:
        expander = SynonymExpander({"ev": ("electric",)})
        assert expander.expand("ev") == ["ev", "electric"]

    def test_default_table_is_read_only(self) -> None:
        with pytest.raises(TypeError):
            SYNONYMS["van"] = ("minivan",)  # type: ignore[index]


class TestEntityDetector:

    def setup_method(self) -> None:
        self.detector = EntityDetector()

    def test_detects_vin(self) -> None:
        hints = self.detector.detect("  1HGCM82633A004352 ")
        assert hints[EntityPattern.VIN.value] == "1HGCM82633A004352"
        assert self.detector.is_vin("1hgcm82633a004352")

    def test_vin_excludes_i_o_q(self) -> None:
        assert not self.detector.is_vin("1HGCM82633A00435O")

    def test_detects_phone(self) -> None:
        assert self.detector.is_phone("+1 (512) 555-0100")
        assert not self.detector.is_phone("555-0100")

    def test_detects_id(self) -> None:
        assert self.detector.is_id("ABC-12345")
        assert not self.detector.is_id("abc")

    def test_free_text_yields_no_hints(self) -> None:
        assert self.detector.detect("toyota camry") == {}

    def test_empty_query_yields_no_hints(self) -> None:
        assert self.detector.detect("") == {}


class TestSearchRequest:

    def test_entity_kind_is_case_insensitive(self) -> None:
        assert SearchRequest(entity_kind="Purchase").entity_kind is EntityKind.PURCHASE

    def test_profile_kinds_are_not_searchable(self) -> None:
        with pytest.raises(ValidationError):
            SearchRequest(entity_kind="seller")

    def test_page_is_one_based(self) -> None:
        with pytest.raises(ValidationError):
            SearchRequest(page=0)

    def test_accepts_camel_case(self) -> None:
        request = SearchRequest.model_validate({"pageSize": 5, "sortBy": "mileage", "includeAggregations": True})
        assert request.page_size == 5
        assert request.sort_by is SortField.MILEAGE
        assert request.include_aggregations is True

    def test_full_text_query_is_fuzzy_and_weighted(self) -> None:
        clause = SearchOrchestrator.full_text_query("camry")["multi_match"]
        assert clause["fuzziness"] == "AUTO"
        assert "vin^3" in clause["fields"]
