"""
Health check utilities for the memory engine.
"""

from typing import TYPE_CHECKING, Any, Dict

from .logging_config import get_logger

if TYPE_CHECKING:
    from ..services.memory_management import MemoryEngine

logger = get_logger(__name__)


def check_health(engine: 'MemoryEngine') -> bool:
    """Check the health of all system components.

    Returns:
        True if all components are healthy, False otherwise
    """
    try:
        health_status = get_health_status(engine)

        # Check if all components are healthy
        all_healthy = all(status.get('healthy', False) for status in health_status.values())

        if all_healthy:
            logger.info('All system components are healthy')
        else:
            logger.warning('Some system components are unhealthy')

        return all_healthy

    except Exception as e:
        logger.error(f'Health check failed: {e}')
        return False


def get_health_status(engine: 'MemoryEngine') -> Dict[str, Any]:
    """Get detailed health status of all components.

    Returns:
        Dictionary with health status of each component
    """
    health_status = {}

    try:
        health_status['storage'] = {
            'healthy': engine.storage.health_check(),
            'service': 'SQLite',
            'path': engine.storage.config.db_path,
            'indexed_documents': engine.index.doc_count
        }
    except Exception as e:
        health_status['storage'] = {'healthy': False, 'service': 'SQLite', 'error': str(e)}

    # An unconfigured provider is not a fault: semantic search runs on TF-IDF
    provider = engine.dense_provider
    if provider is not None and hasattr(provider, 'health_check'):
        try:
            health_status['dense_provider'] = {'healthy': bool(provider.health_check()), 'service': getattr(provider, 'name', 'dense')}
        except Exception as e:
            health_status['dense_provider'] = {'healthy': False, 'service': getattr(provider, 'name', 'dense'), 'error': str(e)}

    return health_status
