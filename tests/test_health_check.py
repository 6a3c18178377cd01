"""Tests for storage health reporting."""

from dataclasses import replace
from unittest.mock import MagicMock, patch

import pytest

from memory_graph.utils import health_check
from memory_graph.utils.config import load_config


@pytest.fixture
def aws_config():
    return replace(load_config(), storage_backend='aws')


class TestHealthCheck:
    """Tests for the health check helpers."""

    def test_all_healthy(self, aws_config):
        """Both stores report healthy when reachable and indexed."""
        with patch.object(health_check, 'NeptuneClient') as neptune, patch.object(health_check, 'OpenSearchClient') as opensearch:
            neptune.return_value.health_check.return_value = True
            opensearch.return_value.missing_indexes.return_value = []

            assert health_check.check_health(aws_config)
            neptune.return_value.close.assert_called_once()

    def test_missing_index_is_unhealthy(self, aws_config):
        """An OpenSearch index that was never created makes the store unhealthy."""
        with patch.object(health_check, 'NeptuneClient') as neptune, patch.object(health_check, 'OpenSearchClient') as opensearch:
            neptune.return_value.health_check.return_value = True
            opensearch.return_value.missing_indexes.return_value = ['alias']

            status = health_check.get_health_status(aws_config)

        assert status['opensearch']['missing_indexes'] == ['alias']
        assert not status['opensearch']['healthy']

    def test_connection_failure_is_reported(self, aws_config):
        """A store that cannot be reached is reported with its error."""
        with patch.object(health_check, 'NeptuneClient', side_effect=RuntimeError('No AWS credentials found')), \
                patch.object(health_check, 'OpenSearchClient', return_value=MagicMock(**{'missing_indexes.return_value': []})):
            status = health_check.get_health_status(aws_config)
            healthy = health_check.check_health(aws_config)

        assert status['neptune'] == {'healthy': False, 'service': 'Amazon Neptune', 'error': 'No AWS credentials found'}
        assert status['opensearch']['healthy']
        assert not healthy

    def test_in_process_backend(self):
        """The in-process backend is healthy without touching AWS."""
        with patch.object(health_check, 'NeptuneClient') as neptune:
            assert health_check.check_health(replace(load_config(), storage_backend='memory'))
        neptune.assert_not_called()

    def test_system_info(self, aws_config):
        """System info includes configuration and health."""
        with patch.object(health_check, 'get_health_status', return_value={}):
            info = health_check.get_system_info(aws_config)

        assert info['service_name'] == 'Memory Graph'
        assert info['configuration']['storage_backend'] == 'aws'
        assert info['health_status'] == {}
