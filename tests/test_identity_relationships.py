"""Tests for SAME_AS identity relationships."""

from unittest.mock import AsyncMock

import pytest

from builders import person
from memory_graph.models.core import EntityMention
from memory_graph.repositories.base import RepositoryError
from memory_graph.services.identity_relationships import (IDENTITY_THRESHOLD, IdentityRelationshipError, IdentityRelationshipService,
                                                          build_identity_relationships, collect_identity_entities)

MATSUOKA = [person('J. Matsuoka', True), person('Bob Matsuoka', True), person('Robert Matsuoka', True)]


@pytest.fixture
def service(relationship_repository) -> IdentityRelationshipService:
    """Service over an in-memory relationship store."""
    return IdentityRelationshipService(relationship_repository)


class TestBuildIdentityRelationships:
    """Tests for the pure edge builder."""

    def test_threshold(self):
        """Identity matching uses a relaxed 0.5 threshold."""
        assert IDENTITY_THRESHOLD == 0.5

    def test_collect_identity_entities(self):
        """Only identity-flagged mentions are collected."""
        entities = [person('Bob', True), person('Alice'), person('Robert', True)]
        assert [e.value for e in collect_identity_entities(entities)] == ['Bob', 'Robert']

    def test_name_variants_are_linked(self):
        """Three spellings of the user's name produce SAME_AS edges citing the match reason."""
        relationships = build_identity_relationships(MATSUOKA, 'user-1')

        assert len(relationships) >= 2
        for rel in relationships:
            assert rel.relationship_type == 'SAME_AS'
            assert rel.status == 'active'
            assert rel.source_id == 'identity-resolution'
            assert rel.evidence.startswith('Identity alias match: ')
            assert rel.confidence >= 0.9
        assert any('nickname match' in rel.evidence for rel in relationships)

    def test_match_confidence_raises_edge_confidence(self):
        """An entity's own match confidence can lift the edge confidence."""
        entities = [person('Bob Matsuoka', True, match_confidence=0.97), person('Robert Matsuoka', True)]

        relationships = build_identity_relationships(entities, 'user-1')

        assert len(relationships) == 1
        assert relationships[0].confidence == 0.97

    def test_zero_match_confidence_is_kept(self):
        """A match confidence of 0 is a real value, not a missing one."""
        entities = [person('Jon Matsuoka', True, match_confidence=0.0), person('John Matsuoka', True, match_confidence=0.0)]

        relationships = build_identity_relationships(entities, 'user-1')

        assert len(relationships) == 1
        assert relationships[0].confidence == 0.85

    def test_fewer_than_two_identities(self):
        """A single identity mention produces no edges."""
        assert build_identity_relationships([person('Bob Matsuoka', True), person('Robert Matsuoka')], 'user-1') == []

    def test_types_are_not_mixed(self):
        """Identity mentions of different types are never linked."""
        entities = [person('Matsuoka', True), EntityMention(type='company', value='Matsuoka', is_identity=True)]
        assert build_identity_relationships(entities, 'user-1') == []

    def test_dissimilar_identities_not_linked(self):
        """Identity mentions that do not match stay unlinked."""
        entities = [person('Alice Jones', True), person('Xavier Wu', True)]
        assert build_identity_relationships(entities, 'user-1') == []


class TestIdentityRelationshipService:
    """Tests for persisting identity edges."""

    @pytest.mark.asyncio
    async def test_create_and_deduplicate(self, service, relationship_repository):
        """Edges are saved once; a repeat run stores nothing new."""
        created = await service.create_identity_relationships(MATSUOKA, 'user-1')
        again = await service.create_identity_relationships(list(reversed(MATSUOKA)), 'user-1')

        assert created >= 2
        assert again == 0
        assert len(await relationship_repository.list_relationships('user-1', 100)) == created

    @pytest.mark.asyncio
    async def test_process_raw_records(self, service):
        """Raw extraction records with camelCase flags are accepted."""
        records = [
            {'type': 'person', 'value': 'Bob Matsuoka', 'isIdentity': True},
            {'type': 'person', 'value': 'Robert Matsuoka', 'isIdentity': True, 'matchConfidence': 0.95},
            {'type': 'person', 'value': 'Alice Jones'},
        ]

        assert await service.process_identity_relationships(records, 'user-1') == 1

    @pytest.mark.asyncio
    async def test_string_flags_in_records(self, service):
        """Identity flags sent as strings are parsed, so "false" is not an identity."""
        records = [
            {'type': 'person', 'value': 'Bob Matsuoka', 'isIdentity': 'false'},
            {'type': 'person', 'value': 'Robert Matsuoka', 'isIdentity': 'true'},
        ]

        assert EntityMention.from_dict(records[0]).is_identity is False
        assert EntityMention.from_dict(records[1]).is_identity is True
        assert await service.process_identity_relationships(records, 'user-1') == 0

    @pytest.mark.asyncio
    async def test_nothing_to_save(self):
        """No identity pairs means the store is not called."""
        relationships = AsyncMock()
        service = IdentityRelationshipService(relationships)

        assert await service.create_identity_relationships([person('Bob', True)], 'user-1') == 0
        relationships.save_relationships.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_store_failure(self):
        """A failing store raises a service error."""
        relationships = AsyncMock()
        relationships.save_relationships.side_effect = RepositoryError('down')
        service = IdentityRelationshipService(relationships)

        with pytest.raises(IdentityRelationshipError):
            await service.create_identity_relationships(MATSUOKA, 'user-1')
