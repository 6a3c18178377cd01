"""
Temporal decay of memory strength.

Memories fade exponentially unless they are accessed:

    strength = exp(-effective_rate * days_since_access)
    effective_rate = decay_rate * (1 - importance * 0.5)

High importance halves the decay rate at most, each category decays at its own
rate, and reading a memory resets its decay clock (``refresh``). That reset is
the only reinforcement mechanism, so frequently retrieved memories stay strong.
A memory past its hard expiration has strength 0 regardless of the curve.

Everything here is pure except :func:`refresh`, which mutates the memory it
is given.
"""

import math
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from ..models.core import DECAY_RATES, DEFAULT_IMPORTANCE, DecayStats, Memory, ScoredMemory
from ..utils.timestamp_utils import days_between, ensure_utc, utc_now

# Relevance weights
STRENGTH_WEIGHT = 0.5
CONFIDENCE_WEIGHT = 0.3
IMPORTANCE_WEIGHT = 0.2

# Decay statistics bands
STRONG_THRESHOLD = 0.7
WEAK_THRESHOLD = 0.3

DEFAULT_DECAY_THRESHOLD = 0.1


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def decay_rate_for(category: str) -> float:
    """Decay rate (days^-1) for a memory category."""
    return DECAY_RATES[category]


def default_importance_for(category: str) -> float:
    """Default importance for a memory category."""
    return DEFAULT_IMPORTANCE[category]


def effective_decay_rate(memory: Memory) -> float:
    """Decay rate after the importance modifier; 0 means the memory never decays."""
    decay_rate = memory.decay_rate if memory.decay_rate is not None else DECAY_RATES.get(memory.category, 0.0)
    importance = memory.importance if memory.importance is not None else 0.0
    importance_modifier = 1 - _clamp(importance) * 0.5
    return max(0.0, decay_rate * importance_modifier)


def reference_date(memory: Memory) -> datetime:
    """Start of the current decay period: last access, or the source date."""
    return ensure_utc(memory.last_accessed or memory.source_date)


def days_since_access(memory: Memory, now: Optional[datetime] = None) -> float:
    return days_between(reference_date(memory), now or utc_now())


def is_expired(memory: Memory, now: Optional[datetime] = None) -> bool:
    """True once ``now`` is past the memory's hard expiration."""
    if memory.expires_at is None:
        return False
    return ensure_utc(now or utc_now()) > ensure_utc(memory.expires_at)


def calculate_strength(memory: Memory, now: Optional[datetime] = None) -> float:
    """Current strength of a memory, in [0, 1].

    Args:
        memory: Memory with decay parameters
        now: Evaluation time (defaults to the current time)

    Returns:
        0 for expired memories, 1 for memories that never decay, otherwise
        the exponential decay since the last access
    """
    now = ensure_utc(now or utc_now())

    if is_expired(memory, now):
        return 0.0

    rate = effective_decay_rate(memory)
    if rate == 0:
        return 1.0

    strength = math.exp(-rate * days_since_access(memory, now))
    return _clamp(strength)


def relevance_score(strength: float, confidence: float, importance: float) -> float:
    return strength * STRENGTH_WEIGHT + confidence * CONFIDENCE_WEIGHT + importance * IMPORTANCE_WEIGHT


def score_memory(memory: Memory, now: Optional[datetime] = None) -> ScoredMemory:
    """Attach strength, timing info and relevance score to a memory."""
    now = ensure_utc(now or utc_now())
    strength = calculate_strength(memory, now)
    return ScoredMemory(memory=memory,
                        strength=strength,
                        age_in_days=days_between(memory.source_date, now),
                        days_since_access=days_since_access(memory, now),
                        score=relevance_score(strength, memory.confidence, memory.importance))


def rank_by_relevance(memories: Iterable[Memory], now: Optional[datetime] = None) -> List[ScoredMemory]:
    """Sort memories by decay-weighted relevance, highest first.

    All memories are scored against the same ``now`` so the result is a total
    order on the weighted score; ties keep their input order.
    """
    now = ensure_utc(now or utc_now())
    scored = [score_memory(memory, now) for memory in memories]
    scored.sort(key=lambda s: s.score, reverse=True)
    return scored


def filter_by_strength(memories: Iterable[Memory], min_strength: float, now: Optional[datetime] = None) -> List[ScoredMemory]:
    """Keep memories whose strength is at least ``min_strength``."""
    now = ensure_utc(now or utc_now())
    scored = [score_memory(memory, now) for memory in memories]
    return [s for s in scored if s.strength >= min_strength]


def half_life(memory: Memory) -> Optional[float]:
    """Days until strength halves from its last-access baseline.

    Returns:
        Half-life in days, or None when the memory never decays
    """
    rate = effective_decay_rate(memory)
    if rate == 0:
        return None
    return math.log(2) / rate


def predict_decay_date(memory: Memory, threshold: float = DEFAULT_DECAY_THRESHOLD) -> Optional[datetime]:
    """Predict when a memory's strength drops to ``threshold``.

    Args:
        memory: Memory to project
        threshold: Strength threshold in (0, 1]

    Returns:
        The date the threshold is reached (the reference date itself for a
        threshold of 1 or more), or None when it is never reached: the memory
        does not decay or the threshold is 0 or below
    """
    rate = effective_decay_rate(memory)
    if rate == 0 or threshold <= 0:
        return None

    start = reference_date(memory)
    if threshold >= 1:
        return start

    days_until_threshold = -math.log(threshold) / rate
    return start + timedelta(days=days_until_threshold)


def refresh(memory: Memory, now: Optional[datetime] = None) -> Memory:
    """Reset the memory's decay clock by marking it accessed at ``now``.

    Mutates and returns ``memory``. Persisting the new timestamp is up to the
    caller.
    """
    now = ensure_utc(now or utc_now())
    memory.last_accessed = now
    memory.updated_at = now
    return memory


def get_decay_stats(memories: List[Memory], now: Optional[datetime] = None) -> DecayStats:
    """Strength distribution and average half-life of a collection of memories."""
    now = ensure_utc(now or utc_now())
    strengths = [calculate_strength(memory, now) for memory in memories]
    half_lives = [h for h in (half_life(memory) for memory in memories) if h is not None]

    return DecayStats(total=len(memories),
                      avg_strength=sum(strengths) / len(strengths) if strengths else 0.0,
                      strong_memories=sum(1 for s in strengths if s >= STRONG_THRESHOLD),
                      fading_memories=sum(1 for s in strengths if WEAK_THRESHOLD <= s < STRONG_THRESHOLD),
                      weak_memories=sum(1 for s in strengths if s < WEAK_THRESHOLD),
                      avg_half_life=sum(half_lives) / len(half_lives) if half_lives else 0.0)
