"""Tests for entity match scoring."""

import pytest

from builders import person
from memory_graph.models.core import EntityAlias, EntityMention
from memory_graph.services.entity_matcher import (calculate_match_score, is_initial_match, is_nickname_match, jaro_similarity,
                                                  jaro_winkler_similarity, match_entities, needs_review, normalize_for_matching)
from memory_graph.utils.reference_data import build_nickname_table


def company(value: str) -> EntityMention:
    return EntityMention(type='company', value=value)


class TestJaroWinkler:
    """Tests for the string similarity functions."""

    def test_identical_strings(self):
        """Identical strings (including two empty ones) score 1."""
        assert jaro_winkler_similarity('martha', 'martha') == 1.0
        assert jaro_winkler_similarity('', '') == 1.0

    def test_one_empty_string(self):
        """One empty side scores 0."""
        assert jaro_winkler_similarity('martha', '') == 0.0
        assert jaro_winkler_similarity(None, 'martha') == 0.0

    def test_classic_values(self):
        """Known reference values."""
        assert jaro_similarity('martha', 'marhta') == pytest.approx(0.9444, abs=1e-4)
        assert jaro_winkler_similarity('MARTHA', 'MARHTA') == pytest.approx(0.9611, abs=1e-4)
        assert jaro_winkler_similarity('dwayne', 'duane') == pytest.approx(0.84, abs=1e-2)

    def test_symmetric(self):
        """Argument order does not matter."""
        pairs = [('dixon', 'dicksonx'), ('j matsuoka', 'bob matsuoka'), ('abc', 'cab'), ('robert', 'rupert')]
        for a, b in pairs:
            assert jaro_winkler_similarity(a, b) == jaro_winkler_similarity(b, a)

    def test_case_and_whitespace_ignored(self):
        """Inputs are lowercased and trimmed."""
        assert jaro_winkler_similarity('  Smith ', 'smith') == 1.0

    def test_no_common_characters(self):
        """Strings sharing nothing score 0."""
        assert jaro_winkler_similarity('abc', 'xyz') == 0.0


class TestNameHelpers:
    """Tests for normalization, nickname and initial helpers."""

    def test_normalize(self):
        """Punctuation is dropped and whitespace collapsed."""
        assert normalize_for_matching('  J.P.   Morgan, Inc. ') == 'jp morgan inc'
        assert normalize_for_matching('') == ''
        assert normalize_for_matching(None) == ''

    def test_normalize_keeps_accented_letters(self):
        """Unicode letters count as word characters."""
        assert normalize_for_matching('José Núñez') == 'josé núñez'

    def test_nickname_match(self):
        """Variants of one formal name match each other."""
        assert is_nickname_match('Bob', 'Robert')
        assert is_nickname_match('bobby', 'rob')
        assert not is_nickname_match('bob', 'bill')

    def test_nickname_match_custom_table(self):
        """A custom nickname table can be supplied."""
        table = build_nickname_table({'giuseppe': ['beppe', 'pino']})
        assert is_nickname_match('beppe', 'pino', table)
        assert not is_nickname_match('bob', 'robert', table)

    def test_initial_match(self):
        """A one-letter or dotted initial matches a name starting with it."""
        assert is_initial_match('J.', 'John')
        assert is_initial_match('john', 'j')
        assert not is_initial_match('K.', 'John')
        assert not is_initial_match('Jo', 'John')


class TestCalculateMatchScore:
    """Tests for calculate_match_score."""

    def test_nickname_with_same_last_name(self):
        """Bob Smith and Robert Smith match by nickname at 0.85."""
        confidence, reason = calculate_match_score(person('Bob Smith'), person('Robert Smith'))
        assert confidence == 0.85
        assert 'nickname match' in reason

    def test_different_types_never_match(self):
        """Identical text of different types scores 0."""
        confidence, reason = calculate_match_score(person('John Doe'), company('John Doe'))
        assert confidence == 0.0
        assert reason == 'different entity types'

    def test_exact_match_after_normalization(self):
        """Case and punctuation differences are an exact match."""
        confidence, reason = calculate_match_score(company('J.P. Morgan'), company('jp morgan'))
        assert confidence == 1.0
        assert reason == 'exact match'

    def test_empty_values_match_exactly(self):
        """Two values with nothing left after normalization are an exact match."""
        mention = company('!!!')
        assert calculate_match_score(mention, mention) == (1.0, 'exact match')
        assert calculate_match_score(company('...'), company('!!!')) == (1.0, 'exact match')

    def test_one_empty_value_scores_zero(self):
        """A value with nothing left after normalization scores 0 against a real name."""
        assert calculate_match_score(company('!!!'), company('Acme')) == (0.0, 'empty entity value')

    def test_known_alias(self):
        """An alias record matches in either direction at 0.95."""
        aliases = [EntityAlias(user_id='user-1', entity_type='company', entity_value='Amazon Web Services', alias='AWS')]

        confidence, reason = calculate_match_score(company('aws'), company('Amazon Web Services'), aliases)
        assert confidence == 0.95
        assert 'known alias' in reason

        confidence, _ = calculate_match_score(company('Amazon Web Services'), company('AWS'), aliases)
        assert confidence == 0.95

    def test_alias_of_other_type_ignored(self):
        """Alias records only apply to entities of the same type."""
        aliases = [EntityAlias(user_id='user-1', entity_type='project', entity_value='Amazon Web Services', alias='AWS')]
        confidence, _ = calculate_match_score(company('AWS'), company('Amazon Web Services'), aliases)
        assert confidence < 0.95

    def test_initial_with_same_last_name(self):
        """J. Smith and John Smith match by initial at 0.70."""
        confidence, reason = calculate_match_score(person('J. Smith'), person('John Smith'))
        assert confidence == 0.7
        assert 'initial match' in reason

    def test_similar_first_names(self):
        """Close first-name spellings with the same last name score 0.80."""
        confidence, reason = calculate_match_score(person('Jonathon Smith'), person('Jonathan Smith'))
        assert confidence == 0.8
        assert 'similar first names' in reason

    def test_high_similarity(self):
        """A near-identical spelling scores 0.9."""
        confidence, reason = calculate_match_score(company('Microsoft'), company('Microsft'))
        assert confidence == 0.9
        assert 'high Jaro-Winkler similarity' in reason

    def test_unrelated_names(self):
        """Dissimilar values fall below the threshold."""
        confidence, reason = calculate_match_score(person('John Smith'), person('Jane Doe'))
        assert confidence == 0.0
        assert reason == 'below similarity threshold'

    def test_symmetric(self):
        """Swapping the entities does not change the score."""
        pairs = [(person('J. Matsuoka'), person('Robert Matsuoka')), (company('Acme Corp'), company('Acme Corporation'))]
        for e1, e2 in pairs:
            assert calculate_match_score(e1, e2)[0] == calculate_match_score(e2, e1)[0]


class TestMatchEntities:
    """Tests for pairwise matching and review bands."""

    def test_pairs_compared_within_type_only(self):
        """Only same-typed pairs are compared, best first."""
        entities = [person('Bob Smith'), person('Robert Smith'), person('Bob Smith'), company('Bob Smith')]

        matches = match_entities(entities)

        assert [m.confidence for m in matches] == [1.0, 0.85, 0.85]
        assert all(m.entity1.type == m.entity2.type == 'person' for m in matches)

    def test_min_confidence(self):
        """Matches below the minimum are dropped."""
        matches = match_entities([person('J. Smith'), person('John Smith')], min_confidence=0.75)
        assert matches == []

    def test_needs_review(self):
        """Review band is [0.8, 0.95)."""
        assert needs_review(0.85)
        assert needs_review(0.8)
        assert not needs_review(0.95)
        assert not needs_review(0.75)
