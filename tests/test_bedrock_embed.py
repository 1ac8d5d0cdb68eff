"""Tests for the Bedrock embedding provider with a mocked runtime client."""

import dataclasses
import io
import json
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from aimemory.utils.bedrock_embed import BedrockEmbed, BedrockEmbedError
from aimemory.utils.config import config as default_config
from aimemory.utils.embedding_provider import EmbeddingProvider, EmbeddingProviderError


def _response(payload):
    return {'body': io.BytesIO(json.dumps(payload).encode('utf-8'))}


def _throttled():
    return ClientError({'Error': {'Code': 'ThrottlingException', 'Message': 'slow down'}}, 'InvokeModel')


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr('aimemory.utils.bedrock_embed.time.sleep', lambda _: None)


def _embedder(client, **overrides):
    settings = dict(model_id='amazon.titan-embed-text-v2:0', dimension=4, retry_attempts=3, retry_delay=0.0, batch_size=2)
    settings.update(overrides)
    return BedrockEmbed(dataclasses.replace(default_config.bedrock_embed, **settings), client=client)


def test_satisfies_provider_contract():
    embedder = _embedder(MagicMock())
    assert isinstance(embedder, EmbeddingProvider)
    assert embedder.name == 'bedrock'
    assert issubclass(BedrockEmbedError, EmbeddingProviderError)


def test_titan_embed():
    client = MagicMock()
    client.invoke_model.return_value = _response({'embedding': [0.1, 0.2, 0.3, 0.4]})

    assert _embedder(client).embed('hello') == pytest.approx([0.1, 0.2, 0.3, 0.4])
    kwargs = client.invoke_model.call_args.kwargs
    assert kwargs['modelId'] == 'amazon.titan-embed-text-v2:0'
    assert json.loads(kwargs['body']) == {'inputText': 'hello', 'dimensions': 4}


def test_titan_batch_is_one_request_per_text():
    client = MagicMock()
    client.invoke_model.side_effect = [_response({'embedding': [float(i)] * 4}) for i in range(3)]

    vectors = _embedder(client).embed_batch(['a1', 'b2', 'c3'])
    assert [v[0] for v in vectors] == [0.0, 1.0, 2.0]
    assert client.invoke_model.call_count == 3


def test_cohere_batches_by_size():
    client = MagicMock()
    client.invoke_model.side_effect = [
        _response({'embeddings': [[1.0] * 1024, [2.0] * 1024]}),
        _response({'embeddings': [[3.0] * 1024]}),
    ]
    embedder = _embedder(client, model_id='cohere.embed-multilingual-v3', dimension=1024)

    vectors = embedder.embed_batch(['one', 'two', 'three'])
    assert [v[0] for v in vectors] == [1.0, 2.0, 3.0]
    first_request = json.loads(client.invoke_model.call_args_list[0].kwargs['body'])
    assert first_request == {'input_type': 'search_document', 'texts': ['one', 'two']}


def test_cohere_query_input_type():
    client = MagicMock()
    client.invoke_model.return_value = _response({'embeddings': [[0.5] * 1024]})
    embedder = _embedder(client, model_id='cohere.embed-english-v3', dimension=1024)

    embedder.embed_query('where is alice')
    assert json.loads(client.invoke_model.call_args.kwargs['body'])['input_type'] == 'search_query'


def test_cohere_rejects_other_dimensions():
    with pytest.raises(BedrockEmbedError):
        _embedder(MagicMock(), model_id='cohere.embed-english-v3', dimension=512).embed('hello')


def test_unsupported_model():
    with pytest.raises(BedrockEmbedError):
        _embedder(MagicMock(), model_id='acme.embedder-v1').embed('hello')


def test_retries_then_succeeds():
    client = MagicMock()
    client.invoke_model.side_effect = [_throttled(), _response({'embedding': [1.0] * 4})]

    assert _embedder(client).embed('hello') == [1.0] * 4
    assert client.invoke_model.call_count == 2


def test_gives_up_after_retry_attempts():
    client = MagicMock()
    client.invoke_model.side_effect = _throttled()

    with pytest.raises(BedrockEmbedError):
        _embedder(client).embed('hello')
    assert client.invoke_model.call_count == 3


def test_wrong_dimension_is_an_error():
    client = MagicMock()
    client.invoke_model.return_value = _response({'embedding': [1.0, 2.0]})
    with pytest.raises(BedrockEmbedError):
        _embedder(client).embed('hello')


def test_blank_text_gets_zero_vector_without_request():
    client = MagicMock()
    client.invoke_model.return_value = _response({'embedding': [1.0] * 4})
    embedder = _embedder(client)

    assert embedder.embed('  ') == [0.0] * 4
    assert embedder.embed_batch([]) == []
    vectors = embedder.embed_batch(['', 'hello'])
    assert vectors == [[0.0] * 4, [1.0] * 4]
    assert client.invoke_model.call_count == 1


def test_health_check():
    client = MagicMock()
    client.invoke_model.return_value = _response({'embedding': [1.0] * 4})
    assert _embedder(client).health_check() is True

    client.invoke_model.side_effect = _throttled()
    assert _embedder(client).health_check() is False
