"""Tests for the temporal decay engine."""

import math
import random
from datetime import timedelta

import pytest

from builders import NOW, make_memory
from memory_graph.models.core import DECAY_RATES, MEMORY_CATEGORIES
from memory_graph.services.decay import (calculate_strength, effective_decay_rate, filter_by_strength, get_decay_stats, half_life,
                                         predict_decay_date, rank_by_relevance, refresh, relevance_score, score_memory)


class TestCalculateStrength:
    """Tests for calculate_strength."""

    def test_reminder_after_ten_days_is_weak(self):
        """A never-accessed reminder observed 10 days ago has strength e^-1.4."""
        memory = make_memory(category='reminder', days_ago=10)

        strength = calculate_strength(memory, NOW)

        assert effective_decay_rate(memory) == pytest.approx(0.14)
        assert strength == pytest.approx(math.exp(-1.4))
        assert strength == pytest.approx(0.2466, abs=1e-4)
        assert strength < 0.3

    def test_fresh_memory_is_full_strength(self):
        """A memory observed just now has strength 1."""
        assert calculate_strength(make_memory(days_ago=0), NOW) == pytest.approx(1.0)

    def test_zero_decay_rate_never_decays(self):
        """A memory with decay rate 0 keeps strength 1 forever."""
        memory = make_memory(days_ago=5000, decay_rate=0.0)
        assert calculate_strength(memory, NOW) == 1.0

    def test_expired_memory_has_zero_strength(self):
        """Hard expiration overrides the decay curve."""
        memory = make_memory(days_ago=1, expires_at=NOW - timedelta(hours=1))
        assert calculate_strength(memory, NOW) == 0.0

    def test_not_yet_expired_memory_decays_normally(self):
        """A future expiration date does not affect strength."""
        memory = make_memory(days_ago=1, expires_at=NOW + timedelta(days=1))
        assert calculate_strength(memory, NOW) > 0.9

    def test_last_access_resets_the_clock(self):
        """Decay is measured from the last access, not the source date."""
        memory = make_memory(category='sentiment', days_ago=100, last_accessed=NOW - timedelta(days=1))
        expected = math.exp(-0.10 * (1 - 0.4 * 0.5) * 1)
        assert calculate_strength(memory, NOW) == pytest.approx(expected)

    def test_importance_slows_decay_by_at_most_half(self):
        """Importance 1 halves the decay rate; importance 0 leaves it unchanged."""
        important = make_memory(category='event', importance=1.0)
        unimportant = make_memory(category='event', importance=0.0)

        assert effective_decay_rate(important) == pytest.approx(DECAY_RATES['event'] / 2)
        assert effective_decay_rate(unimportant) == pytest.approx(DECAY_RATES['event'])

    def test_strength_always_in_unit_interval(self):
        """Strength stays within [0, 1] across categories and ages."""
        for category in MEMORY_CATEGORIES:
            for days_ago in (0, 1, 30, 365, 3650):
                strength = calculate_strength(make_memory(category=category, days_ago=days_ago), NOW)
                assert 0.0 <= strength <= 1.0

    def test_strength_never_increases_with_time_since_access(self):
        """Later last accesses never give a weaker memory."""
        for category in MEMORY_CATEGORIES:
            strengths = [
                calculate_strength(make_memory(category=category, days_ago=400, last_accessed=NOW - timedelta(days=days)), NOW)
                for days in (0, 0.5, 1, 2, 7, 30, 90, 365)
            ]
            assert strengths == sorted(strengths, reverse=True), category

    def test_naive_now_is_treated_as_utc(self):
        """A naive evaluation time is interpreted as UTC."""
        memory = make_memory(category='reminder', days_ago=10)
        assert calculate_strength(memory, NOW.replace(tzinfo=None)) == pytest.approx(math.exp(-1.4))


class TestRanking:
    """Tests for relevance scoring and ranking."""

    def test_relevance_score_weights(self):
        """Score is strength*0.5 + confidence*0.3 + importance*0.2."""
        assert relevance_score(1.0, 1.0, 1.0) == pytest.approx(1.0)
        assert relevance_score(0.5, 0.5, 0.5) == pytest.approx(0.5)
        assert relevance_score(0.2, 0.8, 0.6) == pytest.approx(0.1 + 0.24 + 0.12)

    def test_score_memory_reports_timing(self):
        """Scored memories carry age and days since access."""
        memory = make_memory(days_ago=10, last_accessed=NOW - timedelta(days=2))
        scored = score_memory(memory, NOW)

        assert scored.age_in_days == pytest.approx(10)
        assert scored.days_since_access == pytest.approx(2)
        assert scored.score == pytest.approx(relevance_score(scored.strength, 0.8, memory.importance))

    def test_fresher_memory_ranks_first(self):
        """With equal confidence and importance, the stronger memory wins."""
        old = make_memory(memory_id='old', category='event', days_ago=60)
        new = make_memory(memory_id='new', category='event', days_ago=1)

        ranked = rank_by_relevance([old, new], NOW)

        assert [s.memory.id for s in ranked] == ['new', 'old']

    def test_ranking_is_a_total_order_on_score(self):
        """Ranking 1,000 random memories yields non-increasing scores; re-sorting is a no-op."""
        rng = random.Random(42)
        memories = [
            make_memory(memory_id=f'm{i}',
                        category=rng.choice(MEMORY_CATEGORIES),
                        days_ago=rng.uniform(0, 400),
                        confidence=rng.random(),
                        importance=rng.random()) for i in range(1000)
        ]

        ranked = rank_by_relevance(memories, NOW)
        scores = [s.score for s in ranked]

        assert len(ranked) == 1000
        assert all(a >= b for a, b in zip(scores, scores[1:]))
        resorted = sorted(ranked, key=lambda s: s.score, reverse=True)
        assert [s.memory.id for s in resorted] == [s.memory.id for s in ranked]

    def test_filter_by_strength(self):
        """Only memories at or above the threshold are kept."""
        strong = make_memory(memory_id='strong', category='preference', days_ago=1)
        weak = make_memory(memory_id='weak', category='reminder', days_ago=30)

        kept = filter_by_strength([strong, weak], 0.5, NOW)

        assert [s.memory.id for s in kept] == ['strong']


class TestProjections:
    """Tests for half-life and decay date prediction."""

    def test_half_life(self):
        """Half-life is ln 2 over the effective rate."""
        memory = make_memory(category='fact', importance=0.0)
        assert half_life(memory) == pytest.approx(math.log(2) / 0.02)

    def test_half_life_unbounded(self):
        """A memory that never decays has no half-life."""
        assert half_life(make_memory(decay_rate=0.0)) is None

    def test_predict_decay_date(self):
        """Threshold date is reference + (-ln threshold / rate) days."""
        memory = make_memory(category='event', importance=0.0, days_ago=3)
        predicted = predict_decay_date(memory, 0.1)

        expected_days = -math.log(0.1) / 0.05
        assert predicted == memory.source_date + timedelta(days=expected_days)
        assert calculate_strength(memory, predicted) == pytest.approx(0.1)

    def test_predict_decay_date_edge_cases(self):
        """Unreachable thresholds give None; threshold 1 is the reference date."""
        memory = make_memory(category='event', days_ago=3)

        assert predict_decay_date(make_memory(decay_rate=0.0)) is None
        assert predict_decay_date(memory, 0.0) is None
        assert predict_decay_date(memory, 1.0) == memory.source_date


class TestRefreshAndStats:
    """Tests for refresh and decay statistics."""

    def test_refresh_sets_last_accessed(self):
        """Refreshing restores full strength."""
        memory = make_memory(category='reminder', days_ago=10)

        refresh(memory, NOW)

        assert memory.last_accessed == NOW
        assert memory.updated_at == NOW
        assert calculate_strength(memory, NOW) == pytest.approx(1.0)

    def test_decay_stats_bands(self):
        """Memories are counted as strong, fading or weak."""
        memories = [
            make_memory(memory_id='strong', category='preference', days_ago=1),
            make_memory(memory_id='fading', category='event', importance=0.0, days_ago=10),
            make_memory(memory_id='weak', category='reminder', days_ago=30),
            make_memory(memory_id='forever', decay_rate=0.0),
        ]

        stats = get_decay_stats(memories, NOW)

        assert stats.total == 4
        assert stats.strong_memories == 2
        assert stats.fading_memories == 1
        assert stats.weak_memories == 1
        expected_half_life = sum(half_life(m) for m in memories[:3]) / 3
        assert stats.avg_half_life == pytest.approx(expected_half_life)

    def test_decay_stats_empty(self):
        """No memories gives zeroed stats."""
        stats = get_decay_stats([], NOW)
        assert stats.total == 0
        assert stats.avg_strength == 0.0
        assert stats.avg_half_life == 0.0
