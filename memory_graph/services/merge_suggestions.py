"""
Merge suggestions for entity resolution.

Potential duplicates found by the entity matcher are persisted for human review.
Very confident matches can be accepted on the spot, and accepting a suggestion
(either way) records the pair in the user's alias table so later runs score it
as a known alias.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from ..models.core import (REVIEWED_BY_SYSTEM, REVIEWED_BY_USER, SUGGESTION_ACCEPTED, SUGGESTION_PENDING, SUGGESTION_REJECTED,
                           EntityAlias, EntityMention, MatchResult, MergeStats, MergeSuggestion)
from ..repositories.base import AliasRepository, DuplicateRecordError, MergeSuggestionRepository, RepositoryError
from ..utils.config import config
from ..utils.logging_config import get_logger
from ..utils.reference_data import NicknameTable
from ..utils.timestamp_utils import utc_now
from .entity_matcher import AUTO_ACCEPT_THRESHOLD, MIN_MATCH_THRESHOLD, match_entities

logger = get_logger(__name__)


class MergeSuggestionError(Exception):
    """Custom exception for merge suggestion errors."""
    pass


@dataclass
class MergeSuggestionCounts:
    """Outcome of persisting a batch of matches."""
    created: int = 0
    auto_accepted: int = 0


class MergeSuggestionService:
    """Finds likely duplicate entities and records them as merge suggestions."""

    def __init__(self,
                 alias_repository: AliasRepository,
                 suggestion_repository: MergeSuggestionRepository,
                 nicknames: Optional[NicknameTable] = None,
                 auto_accept_high_confidence: Optional[bool] = None):
        """Initialize the merge suggestion service.

        Args:
            alias_repository: Store of the users' known aliases
            suggestion_repository: Store of merge suggestions
            nicknames: Nickname table (uses the configured table if None)
            auto_accept_high_confidence: Default for :meth:`run` (from config if None)
        """
        self.aliases = alias_repository
        self.suggestions = suggestion_repository
        self.nicknames = nicknames
        if auto_accept_high_confidence is None:
            auto_accept_high_confidence = config.entity_resolution.auto_accept_high_confidence
        self.auto_accept_high_confidence = auto_accept_high_confidence

    async def find_potential_matches(self, entities: Iterable[EntityMention], user_id: str) -> List[MatchResult]:
        """Compare entities pairwise within each type and return likely duplicates.

        Args:
            entities: Entity mentions to compare
            user_id: Owner whose alias table is consulted

        Returns:
            Matches with confidence >= 0.7, highest confidence first

        Raises:
            MergeSuggestionError: If the alias table cannot be loaded
        """
        try:
            aliases = await self.aliases.list_aliases(user_id)
        except RepositoryError as e:
            logger.error(f'Failed to load aliases for user {user_id}: {e}')
            raise MergeSuggestionError(f'Failed to load aliases: {e}')

        entities = list(entities)
        matches = match_entities(entities, aliases, self.nicknames, MIN_MATCH_THRESHOLD)
        logger.debug(f'Found {len(matches)} potential matches among {len(entities)} entities for user {user_id}')
        return matches

    async def create_merge_suggestions(self,
                                       matches: Sequence[MatchResult],
                                       user_id: str,
                                       auto_accept_high_confidence: bool = False) -> MergeSuggestionCounts:
        """Persist matches as merge suggestions.

        A record that the store rejects (an existing suggestion for the same
        pair, or any other store error) is skipped; the rest of the batch is
        still written.

        Args:
            matches: Matches to persist
            user_id: Owner of the suggestions
            auto_accept_high_confidence: Accept matches >= 0.95 without review

        Returns:
            Counts of created and auto-accepted suggestions
        """
        counts = MergeSuggestionCounts()

        for match in matches:
            auto_accept = auto_accept_high_confidence and match.confidence >= AUTO_ACCEPT_THRESHOLD
            now = utc_now()
            suggestion = MergeSuggestion(user_id=user_id,
                                         entity1_type=match.entity1.type,
                                         entity1_value=match.entity1.value,
                                         entity2_type=match.entity2.type,
                                         entity2_value=match.entity2.value,
                                         confidence=match.confidence,
                                         match_reason=match.match_reason,
                                         status=SUGGESTION_ACCEPTED if auto_accept else SUGGESTION_PENDING,
                                         reviewed_at=now if auto_accept else None,
                                         reviewed_by=REVIEWED_BY_SYSTEM if auto_accept else None,
                                         created_at=now)
            try:
                await self.suggestions.insert(suggestion)
            except DuplicateRecordError:
                logger.debug(f'Merge suggestion already exists: {match.entity1.value} / {match.entity2.value}')
                continue
            except RepositoryError as e:
                logger.warning(f'Skipping merge suggestion {match.entity1.value} / {match.entity2.value}: {e}')
                continue

            counts.created += 1
            if auto_accept:
                counts.auto_accepted += 1

        logger.info(f'Created {counts.created} merge suggestions for user {user_id} ({counts.auto_accepted} auto-accepted)')
        return counts

    async def run(self,
                  entities: Iterable[EntityMention],
                  user_id: str,
                  auto_accept_high_confidence: Optional[bool] = None) -> MergeSuggestionCounts:
        """Find potential matches among ``entities`` and persist them."""
        if auto_accept_high_confidence is None:
            auto_accept_high_confidence = self.auto_accept_high_confidence

        matches = await self.find_potential_matches(entities, user_id)
        if not matches:
            return MergeSuggestionCounts()
        return await self.create_merge_suggestions(matches, user_id, auto_accept_high_confidence)

    async def list_suggestions(self, user_id: str, status: Optional[str] = SUGGESTION_PENDING) -> List[MergeSuggestion]:
        """List a user's suggestions (pending ones by default; all if status is None)."""
        try:
            return await self.suggestions.list_suggestions(user_id, status)
        except RepositoryError as e:
            logger.error(f'Failed to list merge suggestions for user {user_id}: {e}')
            raise MergeSuggestionError(f'Failed to list merge suggestions: {e}')

    async def review_suggestion(self, user_id: str, suggestion_id: str, accept: bool) -> MergeSuggestion:
        """Record a human decision on a suggestion.

        Accepting stores the second entity value as an alias of the first.

        Args:
            user_id: Owner of the suggestion
            suggestion_id: Suggestion to review
            accept: True to accept the merge, False to reject it

        Returns:
            The updated suggestion

        Raises:
            MergeSuggestionError: If the suggestion cannot be updated
        """
        status = SUGGESTION_ACCEPTED if accept else SUGGESTION_REJECTED
        try:
            suggestion = await self.suggestions.update_status(user_id, suggestion_id, status, utc_now(), REVIEWED_BY_USER)
        except RepositoryError as e:
            logger.error(f'Failed to review merge suggestion {suggestion_id}: {e}')
            raise MergeSuggestionError(f'Failed to review merge suggestion: {e}')

        if accept:
            alias = EntityAlias(user_id=user_id,
                                entity_type=suggestion.entity1_type,
                                entity_value=suggestion.entity1_value,
                                alias=suggestion.entity2_value)
            try:
                await self.aliases.add_alias(alias)
            except DuplicateRecordError:
                logger.debug(f'Alias "{alias.alias}" already recorded for "{alias.entity_value}"')
            except RepositoryError as e:
                logger.error(f'Failed to record alias for suggestion {suggestion_id}: {e}')
                raise MergeSuggestionError(f'Failed to record alias: {e}')

        logger.info(f'Merge suggestion {suggestion_id} {status} for user {user_id}')
        return suggestion

    async def get_merge_stats(self, user_id: str) -> MergeStats:
        """Summarize how a user's suggestions were resolved.

        Accepted suggestions are split by who accepted them: the service at
        creation time or the user on review.
        """
        suggestions = await self.list_suggestions(user_id, None)

        accepted = [s for s in suggestions if s.status == SUGGESTION_ACCEPTED]
        auto_accepted = sum(1 for s in accepted if s.reviewed_by == REVIEWED_BY_SYSTEM)
        total = len(suggestions)

        return MergeStats(total=total,
                          pending=sum(1 for s in suggestions if s.status == SUGGESTION_PENDING),
                          auto_accepted=auto_accepted,
                          manually_accepted=len(accepted) - auto_accepted,
                          rejected=sum(1 for s in suggestions if s.status == SUGGESTION_REJECTED),
                          auto_accept_rate=auto_accepted / total if total else 0.0)
