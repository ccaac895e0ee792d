"""Tests for triagectl.embeddings -- similarity math and root-cause embeddings."""

import asyncio
from unittest.mock import patch

import pytest
from conftest import FakeEmbedder, make_store, tilted

from triagectl.embeddings import (
    EmbeddingError,
    SentenceTransformerEmbedder,
    build_root_cause_text,
    cosine_similarities,
    find_similar_root_causes,
    generate_missing_embeddings,
)
from triagectl.models import vector_to_blob
from triagectl.store import RootCauseCandidate

# ---------------------------------------------------------------------------
# cosine_similarities
# ---------------------------------------------------------------------------

class TestCosineSimilarities:
    def test_identical_and_orthogonal(self):
        sims = cosine_similarities(
            [1.0, 0.0], [vector_to_blob([2.0, 0.0]), vector_to_blob([0.0, 3.0])],
        )
        assert sims[0] == pytest.approx(1.0)
        assert sims[1] == pytest.approx(0.0)

    def test_known_angle(self):
        sims = cosine_similarities(tilted(1.0), [vector_to_blob(tilted(0.9))])
        assert sims[0] == pytest.approx(0.9, abs=1e-5)

    def test_missing_and_mismatched(self):
        sims = cosine_similarities([1.0, 0.0], [None, vector_to_blob([1.0, 0.0, 0.0])])
        assert sims == [None, None]

    def test_zero_vectors(self):
        assert cosine_similarities([0.0, 0.0], [vector_to_blob([1.0, 0.0])]) == [None]
        assert cosine_similarities([1.0, 0.0], [vector_to_blob([0.0, 0.0])]) == [None]


# ---------------------------------------------------------------------------
# SentenceTransformerEmbedder
# ---------------------------------------------------------------------------

class TestSentenceTransformerEmbedder:
    def test_empty_text_rejected(self):
        with pytest.raises(ValueError, match="empty"):
            asyncio.run(SentenceTransformerEmbedder().embed("   "))

    def test_backend_failure_wrapped(self):
        embedder = SentenceTransformerEmbedder("some-model")
        with patch.object(SentenceTransformerEmbedder, "_encode", side_effect=RuntimeError("no GPU")):
            with pytest.raises(EmbeddingError, match="some-model: no GPU"):
                asyncio.run(embedder.embed("text"))

    def test_embedding_metadata(self):
        embedder = SentenceTransformerEmbedder("some-model")
        with patch.object(SentenceTransformerEmbedder, "_encode", return_value=[0.6, 0.8]):
            embedding = asyncio.run(embedder.embed("text"))
        assert embedding.vector == [0.6, 0.8]
        assert embedding.dimensions == 2
        assert embedding.model == "some-model"

    def test_model_not_loaded_until_used(self):
        assert SentenceTransformerEmbedder()._model is None


# ---------------------------------------------------------------------------
# Root-cause embeddings
# ---------------------------------------------------------------------------

def _candidate(title, **kwargs):
    return RootCauseCandidate(category="runtime", title=title, **kwargs)


class TestRootCauseEmbeddings:
    def test_build_text(self):
        rc = type("RC", (), {
            "category": "test_failure", "title": "Test Failure",
            "description": "One or more tests failed.", "suggested_fix": "",
        })()
        assert build_root_cause_text(rc) == "test_failure | Test Failure | One or more tests failed."

    def test_generate_missing(self, tmp_path):
        store = make_store(tmp_path)

        async def go():
            await store.find_or_create_root_cause(_candidate("Worker segfault"))
            await store.find_or_create_root_cause(_candidate("Disk full"))
            result = await generate_missing_embeddings(store, FakeEmbedder())
            return result, await store.root_causes_without_embedding()

        result, remaining = asyncio.run(go())
        assert result == {"total": 2, "generated": 2, "failed": 0}
        assert remaining == []

    def test_generate_missing_counts_failures(self, tmp_path):
        store = make_store(tmp_path)

        async def go():
            await store.find_or_create_root_cause(_candidate("Worker segfault"))
            return await generate_missing_embeddings(store, FakeEmbedder(error="down"))

        assert asyncio.run(go()) == {"total": 1, "generated": 0, "failed": 1}

    def test_nothing_to_do(self, tmp_path):
        store = make_store(tmp_path)
        result = asyncio.run(generate_missing_embeddings(store, FakeEmbedder()))
        assert result == {"total": 0, "generated": 0, "failed": 0}

    def test_find_similar_root_causes(self, tmp_path):
        store = make_store(tmp_path)
        embedder = FakeEmbedder(rules=[
            ("segfault", tilted(1.0)),
            ("Disk", tilted(0.2)),
            ("query", tilted(0.95)),
        ])

        async def go():
            await store.find_or_create_root_cause(_candidate("Worker segfault"))
            await store.find_or_create_root_cause(_candidate("Disk full"))
            await generate_missing_embeddings(store, embedder)
            return await find_similar_root_causes(store, embedder, "query text", threshold=0.7)

        ranked = asyncio.run(go())
        assert [rc.title for rc, _ in ranked] == ["Worker segfault"]
        assert ranked[0][1] == pytest.approx(0.95, abs=1e-4)
