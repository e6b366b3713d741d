"""
Tests for the embedding client.
"""

import pytest
from unittest.mock import AsyncMock, patch, MagicMock

import httpx

from mindmend.errors import EmbeddingError, UpstreamUnavailable
from mindmend.storage.embeddings import Embedder


def _patched_client(mock_client_cls, response=None, side_effect=None):
    mock_client = AsyncMock()
    if side_effect is not None:
        mock_client.post.side_effect = side_effect
    else:
        mock_client.post.return_value = response
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    mock_client_cls.return_value = mock_client
    return mock_client


def _status_error(code):
    resp = MagicMock()
    resp.raise_for_status.side_effect = httpx.HTTPStatusError(
        str(code), request=httpx.Request("POST", "http://fake"), response=httpx.Response(code)
    )
    return resp


@pytest.mark.asyncio
async def test_embed_flat_vector():
    emb = Embedder(api_key="hf_x", model="bge", url="http://fake")
    resp = MagicMock()
    resp.json.return_value = [0.1, 0.2, 0.3]

    with patch("mindmend.storage.embeddings.httpx.AsyncClient") as mock_client_cls:
        client = _patched_client(mock_client_cls, resp)
        vector = await emb.embed("hello")

    assert vector == [0.1, 0.2, 0.3]
    assert client.post.call_args.args[0] == "http://fake/models/bge"
    assert client.post.call_args.kwargs["json"] == {"inputs": "hello"}


@pytest.mark.asyncio
async def test_embed_nested_vector():
    emb = Embedder()
    resp = MagicMock()
    resp.json.return_value = [[1, 2]]

    with patch("mindmend.storage.embeddings.httpx.AsyncClient") as mock_client_cls:
        _patched_client(mock_client_cls, resp)
        assert await emb.embed("hello") == [1.0, 2.0]


@pytest.mark.asyncio
async def test_embed_404_names_the_model():
    emb = Embedder(model="missing-model")
    with patch("mindmend.storage.embeddings.httpx.AsyncClient") as mock_client_cls:
        _patched_client(mock_client_cls, _status_error(404))
        with pytest.raises(EmbeddingError, match="missing-model"):
            await emb.embed("hello")


@pytest.mark.asyncio
async def test_embed_other_status_error():
    emb = Embedder()
    with patch("mindmend.storage.embeddings.httpx.AsyncClient") as mock_client_cls:
        _patched_client(mock_client_cls, _status_error(500))
        with pytest.raises(EmbeddingError, match="HTTP 500"):
            await emb.embed("hello")


@pytest.mark.asyncio
async def test_embed_transport_error():
    emb = Embedder()
    with patch("mindmend.storage.embeddings.httpx.AsyncClient") as mock_client_cls:
        _patched_client(mock_client_cls, side_effect=httpx.ConnectError("refused"))
        with pytest.raises(UpstreamUnavailable):
            await emb.embed("hello")


@pytest.mark.asyncio
async def test_embed_non_json():
    emb = Embedder()
    resp = MagicMock()
    resp.json.side_effect = ValueError("not json")
    resp.text = "<html>gateway</html>"
    with patch("mindmend.storage.embeddings.httpx.AsyncClient") as mock_client_cls:
        _patched_client(mock_client_cls, resp)
        with pytest.raises(EmbeddingError, match="non-JSON"):
            await emb.embed("hello")


@pytest.mark.asyncio
async def test_embed_empty_vector():
    emb = Embedder()
    resp = MagicMock()
    resp.json.return_value = []
    with patch("mindmend.storage.embeddings.httpx.AsyncClient") as mock_client_cls:
        _patched_client(mock_client_cls, resp)
        with pytest.raises(EmbeddingError, match="empty vector"):
            await emb.embed("hello")
