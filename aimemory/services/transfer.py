"""
Export and import of memories and entities as JSON documents.
"""

import json
from typing import Any, Dict, Mapping

from ..models.core import DEFAULT_CATEGORY, DEFAULT_IMPORTANCE, ImportResult
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import to_storage_str
from .memory_management import MemoryEngine

logger = get_logger(__name__)

EXPORT_VERSION = '0.1.0'


class TransferError(Exception):
    """Custom exception for export/import errors."""
    pass


def export_data(engine: MemoryEngine) -> Dict[str, Any]:
    """Serialize every memory (tags as lists) and entity (attributes as mappings)."""
    memories = engine.storage.iter_all_memories()
    entities = engine.storage.all_entities()
    return {
        'version': EXPORT_VERSION,
        'exported_at': to_storage_str(),
        'memories': [memory.to_dict() for memory in memories],
        'entities': [entity.to_dict() for entity in entities]
    }


def export_to_file(engine: MemoryEngine, path: str) -> Dict[str, Any]:
    data = export_data(engine)
    try:
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
    except OSError as e:
        logger.error(f'Failed to write export file {path}: {e}')
        raise TransferError(f'Export failed: {e}')

    logger.info(f"Exported {len(data['memories'])} memories and {len(data['entities'])} entities to {path}")
    return data


def _clamp_importance(value: Any) -> float:
    try:
        importance = float(value)
    except (TypeError, ValueError):
        return DEFAULT_IMPORTANCE
    return min(1.0, max(0.0, importance))


def import_data(engine: MemoryEngine, data: Mapping[str, Any]) -> ImportResult:
    """
    Load an exported document into the engine.

    Memories go through ``add`` so duplicates collapse into existing records; entities
    are upserted by name.

    Args:
        engine: Target MemoryEngine
        data: Document shaped like ``export_data`` output

    Returns:
        ImportResult with counts

    Raises:
        TransferError: If the document is malformed
    """
    if not isinstance(data, Mapping):
        raise TransferError('Import document must be a JSON object')
    memories = data.get('memories') or []
    entities = data.get('entities') or []
    if not isinstance(memories, list) or not isinstance(entities, list):
        raise TransferError("'memories' and 'entities' must be lists")

    result = ImportResult()
    for item in memories:
        if not isinstance(item, Mapping) or not str(item.get('content') or '').strip():
            logger.warning(f'Skipping memory without content: {item!r}')
            continue
        tags = item.get('tags') or []
        added = engine.add(str(item['content']),
                           category=item.get('category') or DEFAULT_CATEGORY,
                           importance=_clamp_importance(item.get('importance', DEFAULT_IMPORTANCE)),
                           source=item.get('source'),
                           tags=tags if isinstance(tags, list) else [])
        if added.duplicate:
            result.duplicates += 1
        else:
            result.memories += 1

    for item in entities:
        if not isinstance(item, Mapping) or not str(item.get('name') or '').strip():
            logger.warning(f'Skipping entity without name: {item!r}')
            continue
        attributes = item.get('attributes')
        engine.add_entity(str(item['name']), item.get('type') or 'unknown', attributes if isinstance(attributes, Mapping) else {})
        result.entities += 1

    logger.info(f'Imported {result.memories} memories ({result.duplicates} duplicates) and {result.entities} entities')
    return result


def import_from_file(engine: MemoryEngine, path: str) -> ImportResult:
    try:
        with open(path, encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.error(f'Failed to read import file {path}: {e}')
        raise TransferError(f'Import failed: {e}')
    return import_data(engine, data)
