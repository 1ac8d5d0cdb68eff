"""Tests for MemoryEngine writes, deduplication, deletion, rebuild and entities."""

import dataclasses

import pytest

from aimemory.models.core import ExtractedMemory
from aimemory.services.deduplication import DeduplicationService
from aimemory.services.memory_management import MemoryEngine, MemoryManagementError
from aimemory.utils.sqlite_client import SQLiteClient, SQLiteClientError

# ============================================================================
# add
# ============================================================================


def test_add_returns_new_memory_with_defaults(engine):
    result = engine.add('Decided to use SQLite for local storage', tags=['decision', 'storage'])

    assert not result.duplicate
    memory = result.memory
    assert memory.id == result.id
    assert memory.category == 'general'
    assert memory.importance == pytest.approx(0.5)
    assert memory.tags == ['decision', 'storage']
    assert memory.access_count == 0
    assert memory.decay_score == pytest.approx(1.0)
    assert memory.created_at is not None
    assert engine.index.doc_count == 1


def test_ids_increase(engine):
    first = engine.add('Alice works at the bakery').id
    second = engine.add('Bob plays the violin').id
    assert second > first


def test_single_string_tag_is_one_tag(engine):
    memory = engine.add('Standup moved to 10am', tags='work').memory
    assert memory.tags == ['work']


def test_add_rejects_bad_input(engine):
    with pytest.raises(ValueError):
        engine.add('   ')
    with pytest.raises(ValueError):
        engine.add('valid content', importance=1.5)
    with pytest.raises(ValueError):
        engine.add('valid content', importance=-0.1)
    assert engine.stats()['total_memories'] == 0


def test_duplicate_raises_importance_without_new_record(engine):
    first = engine.add('I love coding', importance=0.5)
    second = engine.add('I love coding!!', importance=0.9)

    assert second.duplicate
    assert second.id == first.id
    assert second.similarity == pytest.approx(1.0)
    assert engine.stats()['total_memories'] == 1
    assert engine.get(first.id).importance == pytest.approx(0.9)
    # Duplicates never enter the TF-IDF statistics
    assert engine.index.doc_count == 1
    assert engine.index.document_frequency['love'] == 1


def test_duplicate_never_lowers_importance(engine):
    first = engine.add('Alice lives in Tokyo', importance=0.8)
    second = engine.add('alice lives in tokyo', importance=0.3)

    assert second.duplicate
    assert engine.get(first.id).importance == pytest.approx(0.8)


def test_different_content_is_not_duplicate(engine):
    engine.add('Alice lives in Tokyo')
    result = engine.add('Bob moved to Berlin last spring')
    assert not result.duplicate
    assert engine.stats()['total_memories'] == 2


def test_failed_add_rolls_back_record_and_index(engine, monkeypatch):
    engine.add('Alice lives in Tokyo')

    def broken(*args, **kwargs):
        raise SQLiteClientError('disk full')

    monkeypatch.setattr(engine.storage, 'put_sparse_vector', broken)
    with pytest.raises(MemoryManagementError):
        engine.add('Bob moved to Berlin last spring')

    assert engine.stats()['total_memories'] == 1
    assert engine.index.doc_count == 1
    assert 'berlin' not in engine.index.document_frequency


def test_add_extracted_accepts_mappings(engine):
    results = engine.add_extracted([
        {'content': 'Project deadline is next Friday', 'category': 'project', 'importance': 0.8, 'tags': ['deadline']},
        ExtractedMemory(content='Prefers tea over coffee', category='preference'),
        {'content': 'project deadline is next friday'},
    ])

    assert [r.duplicate for r in results] == [False, False, True]
    assert results[0].memory.category == 'project'
    assert results[0].memory.tags == ['deadline']
    assert engine.stats()['by_category'] == {'preference': 1, 'project': 1}


# ============================================================================
# Deduplication candidates
# ============================================================================


def test_best_candidate_wins_over_first(engine, app_config):
    loose = DeduplicationService(engine.storage, app_config.index)
    partial = engine.storage.insert_memory('red green blue yellow', 'general', 0.5, None, [])
    exact = engine.storage.insert_memory('red green blue', 'general', 0.5, None, [])

    match = loose.find_duplicate('red green blue', threshold=0.5)
    assert match.memory_id == exact
    assert partial < exact


def test_equal_similarity_prefers_lowest_id(engine, app_config):
    service = DeduplicationService(engine.storage, app_config.index)
    first = engine.storage.insert_memory('alpha beta gamma', 'general', 0.5, None, [])
    engine.storage.insert_memory('gamma beta alpha', 'general', 0.5, None, [])

    assert service.find_duplicate('alpha beta gamma').memory_id == first


def test_tokenless_content_has_no_duplicate(engine, app_config):
    engine.add('Alice lives in Tokyo')
    service = DeduplicationService(engine.storage, app_config.index)
    assert service.find_duplicate('!!!') is None


# ============================================================================
# forget / set_importance
# ============================================================================


def test_forget_removes_record_vector_and_statistics(engine):
    keep = engine.add('Alice lives in Tokyo').id
    drop = engine.add('Bob moved to Berlin last spring').id

    assert engine.forget(drop) is True
    assert engine.get(drop) is None
    assert engine.get(keep) is not None
    assert engine.index.doc_count == 1
    assert 'berlin' not in engine.index.document_frequency
    assert engine.stats()['sparse_vectors'] == 1

    assert engine.forget(drop) is False
    assert engine.forget(9999) is False


def test_set_importance(engine):
    memory_id = engine.add('Alice lives in Tokyo').id
    assert engine.set_importance(memory_id, 0.95)
    assert engine.get(memory_id).importance == pytest.approx(0.95)
    assert not engine.set_importance(9999, 0.5)
    with pytest.raises(ValueError):
        engine.set_importance(memory_id, 2)


# ============================================================================
# Index persistence and rebuild
# ============================================================================


def test_index_survives_reopen(app_config):
    with MemoryEngine(config=app_config) as first:
        first.add('The weather is hot today')
        first.add('我喜欢做AI项目')
        saved = first.index.copy()

    with MemoryEngine(config=app_config) as second:
        assert second.index == saved


def test_rebuild_restores_corrupted_vectors(engine):
    target = engine.add('cat sat on mat').id
    engine.add('dog ran in park')
    with engine.storage.transaction() as conn:
        conn.execute('UPDATE memory_vectors SET vector = ? WHERE memory_id = ?', ('garbage', target))

    # A corrupted vector only makes its memory unreachable
    assert len(engine.semantic_search('cat mat')) == 0

    assert engine.rebuild() == 2
    assert engine.index.doc_count == 2
    assert engine.semantic_search('cat mat').results[0].memory.id == target


@pytest.mark.parametrize('blob', ['not json', '[]', '"x"', '1', '{"df": [["only-term"]]}'])
def test_rebuild_recovers_from_unreadable_index_state(app_config, blob):
    with MemoryEngine(config=app_config) as first:
        first.add('The weather is hot today')
        with first.storage.transaction() as conn:
            conn.execute('UPDATE tfidf_index SET data = ? WHERE id = 1', (blob, ))

    with MemoryEngine(config=app_config) as second:
        assert second.index.doc_count == 0
        second.rebuild()
        assert second.index.doc_count == 1
        assert 'weather' in second.index.document_frequency


# ============================================================================
# Entities
# ============================================================================


def test_entity_upsert_by_name(engine):
    created = engine.add_entity('Alice', 'person', {'city': 'Tokyo'})
    updated = engine.add_entity('Alice', 'colleague', {'city': 'Osaka'})

    assert updated.id == created.id
    assert updated.type == 'colleague'
    assert updated.attributes == {'city': 'Osaka'}
    assert engine.get_entity('Nobody') is None
    with pytest.raises(ValueError):
        engine.add_entity(' ')


def test_link_memory_entity(engine):
    memory_id = engine.add('Alice lives in Tokyo').id
    engine.add_entity('Alice', 'person')

    assert engine.link_memory_entity(memory_id, 'Alice') is True
    assert engine.link_memory_entity(memory_id, 'Alice') is True
    assert [e.name for e in engine.get_memory_entities(memory_id)] == ['Alice']

    assert engine.link_memory_entity(memory_id, 'Bob') is False
    assert engine.link_memory_entity(9999, 'Alice') is False


def test_forget_drops_entity_links(engine):
    memory_id = engine.add('Alice lives in Tokyo').id
    engine.add_entity('Alice', 'person')
    engine.link_memory_entity(memory_id, 'Alice')

    engine.forget(memory_id)
    assert engine.get_memory_entities(memory_id) == []
    assert engine.get_entity('Alice') is not None


def test_stats(engine):
    engine.add('Alice lives in Tokyo', category='person')
    engine.add('Ship the beta next week', category='project')
    engine.add_entity('Alice', 'person')

    stats = engine.stats()
    assert stats['total_memories'] == 2
    assert stats['by_category'] == {'person': 1, 'project': 1}
    assert stats['total_entities'] == 1
    assert stats['indexed_documents'] == 2
    assert stats['sparse_vectors'] == 2
    assert stats['dense_vectors'] == 0
    assert stats['dense_provider'] is None


def test_storage_errors_on_access_update_are_wrapped(app_config):
    storage = SQLiteClient(dataclasses.replace(app_config.storage, db_path=':memory:'))
    memory_id = storage.insert_memory('Alice lives in Tokyo', 'general', 0.5, None, [])
    storage.close()

    with pytest.raises(SQLiteClientError):
        storage.touch_memories([memory_id])
