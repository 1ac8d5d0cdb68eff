"""Tests for TF-IDF statistics, vectorization and serialization."""

import math

import pytest

from aimemory.index.tfidf import TfIdfIndex
from aimemory.index.vectors import cosine_similarity


def test_add_document_counts_unique_terms_once():
    index = TfIdfIndex()
    index.add_document('cat cat sat')
    assert index.doc_count == 1
    assert index.document_frequency == {'cat': 1, 'sat': 1}
    assert index.vocabulary == {'cat', 'sat'}


def test_add_document_is_not_idempotent():
    index = TfIdfIndex()
    index.add_document('cat sat')
    index.add_document('cat sat')
    assert index.doc_count == 2
    assert index.document_frequency['cat'] == 2


def test_remove_document_inverts_add():
    index = TfIdfIndex()
    index.add_document('cat sat on mat')
    index.add_document('dog sat')
    index.remove_document('cat sat on mat')
    assert index.doc_count == 1
    assert index.document_frequency == {'dog': 1, 'sat': 1}


def test_smoothed_idf():
    index = TfIdfIndex()
    index.build_from_documents(['cat sat', 'dog ran'])
    assert index.idf('cat') == pytest.approx(math.log(3 / 2) + 1)
    # Unseen terms default to zero document frequency
    assert index.idf('zebra') == pytest.approx(math.log(3) + 1)
    assert index.idf('zebra') > index.idf('cat') > 0


def test_vectorize_normalizes_by_max_count():
    index = TfIdfIndex()
    vec = index.vectorize('cat cat dog')
    assert vec == {'cat': pytest.approx(1.0), 'dog': pytest.approx(0.5)}


def test_vectorize_empty_text():
    index = TfIdfIndex()
    index.build_from_documents(['cat sat'])
    assert index.vectorize('') == {}
    assert index.vectorize('   ') == {}
    assert index.vectorize('the and of') == {}


def test_vectorize_with_synonyms():
    index = TfIdfIndex()
    assert 'code' not in index.vectorize('coding')
    assert 'code' in index.vectorize('coding', expand_synonyms=True)


def test_query_ranks_matching_document_first():
    docs = ['cat sat on mat', 'dog ran in park']
    index = TfIdfIndex()
    index.build_from_documents(docs)
    query = index.vectorize('cat mat', expand_synonyms=True)
    first, second = (cosine_similarity(query, index.vectorize(doc)) for doc in docs)
    assert first > second


def test_build_resets_statistics():
    index = TfIdfIndex()
    index.build_from_documents(['a1 b1', 'c1'])
    index.build_from_documents(['d1'])
    assert index.doc_count == 1
    assert index.vocabulary == {'d1'}


def test_serialize_restore_round_trip():
    index = TfIdfIndex()
    index.build_from_documents(['The weather is hot today', 'I like building AI projects', '我喜欢做AI项目'])
    restored = TfIdfIndex.from_json(index.to_json())
    assert restored == index
    text = 'weather projects 项目'
    assert restored.vectorize(text, expand_synonyms=True) == index.vectorize(text, expand_synonyms=True)


def test_from_dict_tolerates_missing_fields():
    index = TfIdfIndex.from_dict({})
    assert index.doc_count == 0
    assert index.document_frequency == {}


@pytest.mark.parametrize('raw', ['[]', '"x"', '1', '{"df": [["only-term"]]}'])
def test_from_json_rejects_non_index_documents(raw):
    with pytest.raises(ValueError):
        TfIdfIndex.from_json(raw)
