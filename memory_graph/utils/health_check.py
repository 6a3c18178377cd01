"""
Health check utilities for the configured storage backend.
"""

from typing import Any, Dict, Optional

from .config import AppConfig, config
from .logging_config import get_logger
from .neptune_client import NeptuneClient
from .opensearch_client import OpenSearchClient

logger = get_logger(__name__)


def check_health(app_config: Optional[AppConfig] = None) -> bool:
    """Check the health of all storage components.

    Returns:
        True if all components are healthy, False otherwise
    """
    health_status = get_health_status(app_config)
    all_healthy = all(status.get('healthy', False) for status in health_status.values())

    if all_healthy:
        logger.info('All storage components are healthy')
    else:
        unhealthy = [name for name, status in health_status.items() if not status.get('healthy', False)]
        logger.warning(f'Unhealthy storage components: {", ".join(unhealthy)}')

    return all_healthy


def _neptune_status(app_config: AppConfig) -> Dict[str, Any]:
    try:
        neptune = NeptuneClient(app_config.neptune)
        try:
            healthy = neptune.health_check()
        finally:
            neptune.close()
        return {'healthy': healthy, 'service': 'Amazon Neptune', 'endpoint': app_config.neptune.endpoint}
    except Exception as e:
        return {'healthy': False, 'service': 'Amazon Neptune', 'error': str(e)}


def _opensearch_status(app_config: AppConfig) -> Dict[str, Any]:
    try:
        opensearch = OpenSearchClient(app_config.opensearch)
        missing = opensearch.missing_indexes()
        return {
            'healthy': not missing,
            'service': 'Amazon OpenSearch',
            'endpoint': app_config.opensearch.endpoint,
            'missing_indexes': missing
        }
    except Exception as e:
        return {'healthy': False, 'service': 'Amazon OpenSearch', 'error': str(e)}


def get_health_status(app_config: Optional[AppConfig] = None) -> Dict[str, Any]:
    """Get detailed health status of each storage component.

    The in-process backend has nothing to reach and is always healthy.

    Args:
        app_config: AppConfig instance, uses default if None

    Returns:
        Dictionary with health status of each component
    """
    app_config = app_config or config

    if app_config.storage_backend == 'memory':
        return {'storage': {'healthy': True, 'service': 'In-process storage'}}

    return {'neptune': _neptune_status(app_config), 'opensearch': _opensearch_status(app_config)}


def get_system_info(app_config: Optional[AppConfig] = None) -> Dict[str, Any]:
    """Get system information and configuration.

    Returns:
        Dictionary with system information
    """
    app_config = app_config or config
    return {
        'service_name': 'Memory Graph',
        'version': '1.0.0',
        'configuration': {
            'environment': app_config.environment,
            'storage_backend': app_config.storage_backend,
            'opensearch_index_prefix': app_config.opensearch.index_prefix,
            'memory_refresh_top_k': app_config.memory.refresh_top_k,
            'entity_auto_accept': app_config.entity_resolution.auto_accept_high_confidence,
            'graph_max_node_limit': app_config.graph.max_node_limit,
            'aws_region': app_config.neptune.region
        },
        'health_status': get_health_status(app_config)
    }
