"""Tests for the MCP tool layer."""

from dataclasses import replace

import pytest

from builders import NOW, make_memory, relationship
from memory_graph import mcp_interface
from memory_graph.models.core import ScoredMemory
from memory_graph.services.graph_clusters import build_graph_data
from memory_graph.utils.config import load_config


@pytest.fixture
def services(monkeypatch):
    """In-memory services installed as the server's services."""
    services = mcp_interface.build_services(replace(load_config(), storage_backend='memory'))
    monkeypatch.setattr(mcp_interface, '_services', services)
    return services


class TestBuildServices:
    """Tests for backend wiring."""

    def test_unknown_backend(self):
        """Only the aws and memory backends exist."""
        with pytest.raises(ValueError):
            mcp_interface.build_services(replace(load_config(), storage_backend='sqlite'))

    def test_get_services_is_cached(self, services):
        """The server reuses one set of services."""
        assert mcp_interface.get_services() is services


class TestSerializers:
    """Tests for tool result serialization."""

    def test_scored_memory(self):
        """Scored memories serialize with rounded scores and ISO dates."""
        memory = make_memory(tags=['db'])
        result = mcp_interface.scored_memory_to_dict(
            ScoredMemory(memory=memory, strength=0.123456, age_in_days=1.234, days_since_access=1.234, score=0.5))

        assert result['strength'] == 0.1235
        assert result['age_in_days'] == 1.23
        assert result['source_date'] == NOW.isoformat()
        assert result['tags'] == ['db']

    def test_graph_data(self):
        """Graph data carries pagination and optional stats."""
        graph = build_graph_data([relationship('Bob', 'Alice')], limit=1)

        result = mcp_interface.graph_data_to_dict(graph)

        assert result['pagination'] == {'total': 2, 'returned': 1, 'has_more': True}
        assert result['stats']['total_nodes'] == 1
        assert set(result['nodes'][0]) >= {'id', 'type', 'value', 'cluster', 'connection_count', 'is_identity'}

        assert 'stats' not in mcp_interface.graph_data_to_dict(build_graph_data([], include_stats=False))


class TestTools:
    """Tests for the tool functions over in-memory storage."""

    @pytest.mark.asyncio
    async def test_save_and_search(self, services):
        """A saved memory can be found again."""
        saved = await mcp_interface.save_memory.fn('user-1', 'Prefers tea over coffee', 'preference', tags=['drinks'])

        results = await mcp_interface.search_memories.fn('user-1', 'tea')

        assert saved['decay_rate'] == 0.01
        assert [r['id'] for r in results] == [saved['id']]
        assert results[0]['strength'] == pytest.approx(1.0, abs=1e-3)

    @pytest.mark.asyncio
    async def test_user_required(self, services):
        """A blank user id is rejected."""
        with pytest.raises(ValueError):
            await mcp_interface.search_memories.fn(' ', 'tea')

    @pytest.mark.asyncio
    async def test_merges_identities_and_graph(self, services):
        """Entity records flow through merge suggestions, identity edges and the graph view."""
        entities = [
            {'type': 'person', 'value': 'Bob Matsuoka', 'isIdentity': True},
            {'type': 'person', 'value': 'Robert Matsuoka', 'isIdentity': True},
        ]

        counts = await mcp_interface.suggest_entity_merges.fn('user-1', entities, auto_accept=False)
        created = await mcp_interface.create_identity_relationships.fn('user-1', entities)
        graph = await mcp_interface.get_graph_data.fn('user-1', relationship_types=['SAME_AS'])
        stats = await mcp_interface.get_merge_stats.fn('user-1')

        assert counts == {'created': 1, 'auto_accepted': 0}
        assert created == {'created': 1}
        assert (stats['total'], stats['pending'], stats['auto_accepted']) == (1, 1, 0)
        assert graph['stats']['identity_relationships'] == 1
        assert len({node['cluster'] for node in graph['nodes']}) == 1

    @pytest.mark.asyncio
    async def test_system_status(self, monkeypatch):
        """System status reports the configured backend's health."""
        monkeypatch.setattr(mcp_interface, 'get_system_info', lambda app_config: {'service_name': 'Memory Graph'})

        assert await mcp_interface.get_system_status.fn() == {'service_name': 'Memory Graph'}
