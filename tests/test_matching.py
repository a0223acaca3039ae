"""
Tests for matching assist: local scoring, response parsing and the
service's behaviour when the model misbehaves.
"""

import pytest

from finditnow.core import MatchingConfig, MatchingService, similarity_score
from finditnow.core.matching import (
    build_suggest_prompt,
    parse_id_list,
    parse_scored_list,
    query_score,
)
from finditnow.schemas import ItemType

from conftest import FakeLlm, days_ago, wallet_report


class TestScoring:

    @pytest.fixture
    def catalog_items(self, services, finder, owner):
        lost = services.catalog.report_item(owner, wallet_report(
            owner.email,
            type=ItemType.LOST,
            name="Brown Leather Wallet",
            description="Brown leather wallet with my library card and initials.",
            date=days_ago(3),
        ))
        good = services.catalog.report_item(finder, wallet_report(finder.email, date=days_ago(2)))
        unrelated = services.catalog.report_item(finder, wallet_report(
            finder.email,
            name="Blue Umbrella",
            category="accessories",
            description="Folding umbrella with a wooden handle.",
            distinguishing_marks=None,
            location="Harbor Station",
            date=days_ago(60),
        ))
        return lost, good, unrelated

    def test_similar_pair_beats_unrelated_pair(self, catalog_items):
        lost, good, unrelated = catalog_items
        assert similarity_score(lost, good) > similarity_score(lost, unrelated)

    def test_score_is_bounded(self, catalog_items):
        lost, good, unrelated = catalog_items
        for found in (good, unrelated, lost):
            assert 0.0 <= similarity_score(lost, found) <= 1.0

    def test_query_score_prefers_matching_words(self, catalog_items):
        _, good, unrelated = catalog_items
        assert query_score("brown leather wallet", "central park", good) > query_score(
            "brown leather wallet", "central park", unrelated
        )

    def test_prompt_lists_candidates(self, catalog_items):
        lost, good, unrelated = catalog_items
        prompt = build_suggest_prompt(lost, [good, unrelated])
        assert f"ID: {good.id}" in prompt
        assert f"ID: {unrelated.id}" in prompt
        assert "Brown Leather Wallet" in prompt


class TestParsing:

    def test_plain_array(self):
        assert parse_id_list('["a", "b"]', {"a", "b"}) == ["a", "b"]

    def test_code_fences_are_stripped(self):
        assert parse_id_list('```json\n["a"]\n```', {"a"}) == ["a"]

    def test_unknown_and_duplicate_ids_dropped(self):
        assert parse_id_list('["a", "zzz", "a"]', {"a"}) == ["a"]

    def test_non_list_rejected(self):
        with pytest.raises(ValueError):
            parse_id_list('{"ids": ["a"]}', {"a"})
        with pytest.raises(ValueError):
            parse_id_list("[1, 2]", {"a"})
        with pytest.raises(ValueError):
            parse_id_list("not json", {"a"})

    def test_scores_are_clamped(self):
        text = '[{"itemId": "a", "matchScore": 1.7}, {"itemId": "b", "matchScore": -2}, {"itemId": "x", "matchScore": 0.5}]'
        assert parse_scored_list(text, {"a", "b"}) == {"a": 1.0, "b": 0.0}

    def test_bad_scores_skipped(self):
        text = '[{"itemId": "a", "matchScore": "high"}, {"itemId": "b", "matchScore": true}]'
        assert parse_scored_list(text, {"a", "b"}) == {}

    def test_non_string_ids_skipped(self):
        text = '[{"itemId": ["a"], "matchScore": 0.5}, {"itemId": {"id": "a"}, "matchScore": 0.5}, {"itemId": "b", "matchScore": 0.4}]'
        assert parse_scored_list(text, {"a", "b"}) == {"b": 0.4}

    def test_out_of_range_numbers_skipped(self):
        text = '[{"itemId": "a", "matchScore": ' + "9" * 400 + '}, {"itemId": "b", "matchScore": NaN}]'
        assert parse_scored_list(text, {"a", "b"}) == {}

    def test_deep_nesting_is_a_parse_error(self):
        text = "[" * 100000 + "]" * 100000
        with pytest.raises(ValueError):
            parse_id_list(text, {"a"})
        with pytest.raises(ValueError):
            parse_scored_list(text, {"a"})


class TestSuggestMatches:

    @pytest.fixture
    def lost(self, services, owner):
        return services.catalog.report_item(owner, wallet_report(
            owner.email, type=ItemType.LOST, date=days_ago(3)
        ))

    def test_no_candidates_skips_the_model(self, services, llm, lost):
        assert services.matching.suggest_matches(lost) == []
        assert llm.prompts == []

    def test_returns_only_offered_ids(self, services, llm, lost, finder):
        found = services.catalog.report_item(finder, wallet_report(finder.email, date=days_ago(2)))
        llm.response = f'```json\n["{found.id}", "invented-id"]\n```'

        assert services.matching.suggest_matches(lost) == [found.id]
        assert len(llm.prompts) == 1

    def test_malformed_response_yields_empty(self, services, llm, lost, finder):
        services.catalog.report_item(finder, wallet_report(finder.email, date=days_ago(2)))
        llm.response = "I think the wallet matches!"
        assert services.matching.suggest_matches(lost) == []

    def test_deeply_nested_response_yields_empty(self, services, llm, lost, finder):
        services.catalog.report_item(finder, wallet_report(finder.email, date=days_ago(2)))
        llm.response = "[" * 100000 + "]" * 100000
        assert services.matching.suggest_matches(lost) == []

    def test_model_error_yields_empty(self, services, llm, lost, finder):
        services.catalog.report_item(finder, wallet_report(finder.email, date=days_ago(2)))
        llm.error = RuntimeError("quota exceeded")
        assert services.matching.suggest_matches(lost) == []

    def test_own_found_items_are_not_candidates(self, services, llm, lost, owner):
        services.catalog.report_item(owner, wallet_report(owner.email, date=days_ago(2)))
        assert services.matching.suggest_matches(lost) == []
        assert llm.prompts == []

    def test_candidates_are_capped(self, services, lost, finder):
        for i in range(5):
            services.catalog.report_item(finder, wallet_report(finder.email, name=f"Wallet {i}"))

        fake = FakeLlm()
        matching = MatchingService(services.catalog, MatchingConfig(max_candidates=2), client=fake)
        matching.suggest_matches(lost)

        assert fake.prompts[0].count("ID: ") == 2

    def test_disabled_without_key(self, services, lost, finder):
        services.catalog.report_item(finder, wallet_report(finder.email))
        matching = MatchingService(services.catalog, MatchingConfig(api_key=""))
        assert not matching.enabled
        assert matching.suggest_matches(lost) == []


class TestMatchItems:

    def test_results_use_catalog_data(self, services, llm, finder):
        found = services.catalog.report_item(finder, wallet_report(finder.email))
        llm.response = f'[{{"itemId": "{found.id}", "matchScore": 0.92}}]'

        results = services.matching.match_items("brown wallet with initials", "Central Park")

        assert results == [{
            "item_id": found.id,
            "found_item_description": found.description,
            "location_found": "Central Park",
            "match_score": 0.92,
        }]

    def test_sorted_by_score(self, services, llm, finder):
        a = services.catalog.report_item(finder, wallet_report(finder.email, name="Wallet A"))
        b = services.catalog.report_item(finder, wallet_report(finder.email, name="Wallet B"))
        llm.response = f'[{{"itemId": "{a.id}", "matchScore": 0.3}}, {{"itemId": "{b.id}", "matchScore": 0.8}}]'

        results = services.matching.match_items("wallet", "park")
        assert [r["item_id"] for r in results] == [b.id, a.id]

    def test_parse_failure_yields_empty(self, services, llm, finder):
        services.catalog.report_item(finder, wallet_report(finder.email))
        llm.response = "[{broken"
        assert services.matching.match_items("wallet", "park") == []

    @pytest.mark.parametrize("reply", [
        '[{"itemId": ["x"], "matchScore": 0.5}]',
        '[{"itemId": "ID", "matchScore": ' + "7" * 400 + '}]',
        "[" * 100000 + "]" * 100000,
    ])
    def test_malformed_entries_yield_empty(self, services, llm, finder, reply):
        found = services.catalog.report_item(finder, wallet_report(finder.email))
        llm.response = reply.replace('"ID"', f'"{found.id}"')
        assert services.matching.match_items("brown leather wallet", "central park") == []
