"""Text embeddings for failure contexts and root causes.

The default backend is sentence-transformers; the model is loaded on first
use and encoding runs in a worker thread. Vectors are L2-normalized so a
dot product is the cosine similarity.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime

import numpy as np

from triagectl.models import RootCause, blob_to_vector

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_MODEL = "all-MiniLM-L6-v2"


def cosine_similarities(query, blobs: list[bytes | None]) -> list[float | None]:
    """Cosine similarity of query against each stored vector blob.

    Entries that are missing, zero-length or of a different dimension
    (another embedding model) get None.
    """
    q = np.asarray(query, dtype=np.float32)
    q_norm = float(np.linalg.norm(q))
    results: list[float | None] = []
    for blob in blobs:
        vec = blob_to_vector(blob)
        if vec is None or vec.shape != q.shape or q_norm == 0.0:
            results.append(None)
            continue
        norm = float(np.linalg.norm(vec))
        if norm == 0.0:
            results.append(None)
            continue
        results.append(float(np.dot(q, vec) / (q_norm * norm)))
    return results


class EmbeddingError(Exception):
    """The embedding backend could not produce a vector."""


@dataclass(frozen=True)
class Embedding:
    vector: list[float]
    dimensions: int
    model: str


class EmbeddingProvider(ABC):
    model_name: str = "unknown"

    @abstractmethod
    async def embed(self, text: str) -> Embedding:
        """Turn text into a fixed-length vector."""


class SentenceTransformerEmbedder(EmbeddingProvider):
    def __init__(self, model_name: str = DEFAULT_EMBEDDING_MODEL, device: str | None = None):
        self.model_name = model_name
        self.device = device
        self._model = None

    def _load(self):
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            logger.info("Loading embedding model %s", self.model_name)
            self._model = SentenceTransformer(self.model_name, device=self.device)
        return self._model

    def _encode(self, text: str) -> list[float]:
        vector = self._load().encode(
            [text],
            convert_to_numpy=True,
            normalize_embeddings=True,
            show_progress_bar=False,
        )[0]
        return vector.astype("float32").tolist()

    async def embed(self, text: str) -> Embedding:
        if not text or not text.strip():
            raise ValueError("Cannot embed empty text")
        try:
            vector = await asyncio.to_thread(self._encode, text)
        except Exception as e:
            raise EmbeddingError(f"{self.model_name}: {e}") from e
        return Embedding(vector=vector, dimensions=len(vector), model=self.model_name)


# ---------------------------------------------------------------------------
# Root-cause embeddings
# ---------------------------------------------------------------------------

def build_root_cause_text(root_cause: RootCause) -> str:
    """Text representation of a catalog entry used for its embedding."""
    parts = [
        root_cause.category,
        root_cause.title,
        root_cause.description,
        root_cause.suggested_fix,
    ]
    return " | ".join(p for p in parts if p)


async def generate_root_cause_embedding(
    store, embedder: EmbeddingProvider, root_cause: RootCause,
) -> Embedding:
    text = build_root_cause_text(root_cause)
    start = time.monotonic()
    embedding = await embedder.embed(text)
    config = {
        "dimensions": embedding.dimensions,
        "text_length": len(text),
        "duration_ms": int((time.monotonic() - start) * 1000),
        "generated_at": datetime.now(UTC).isoformat(),
    }
    await store.set_root_cause_embedding(
        root_cause.id, embedding.vector, embedding.model, config,
    )
    return embedding


async def generate_missing_embeddings(store, embedder: EmbeddingProvider) -> dict:
    """Embed every root cause that has no vector yet.

    Failures are counted and logged; one bad row does not stop the batch.
    """
    pending = await store.root_causes_without_embedding()
    result = {"total": len(pending), "generated": 0, "failed": 0}
    if not pending:
        logger.info("All root causes already have embeddings")
        return result

    logger.info("Generating embeddings for %d root cause(s)...", len(pending))
    for i, root_cause in enumerate(pending, 1):
        try:
            await generate_root_cause_embedding(store, embedder, root_cause)
            result["generated"] += 1
            logger.debug("[%d/%d] Embedded #%d %s",
                         i, len(pending), root_cause.id, root_cause.title)
        except (EmbeddingError, ValueError) as e:
            result["failed"] += 1
            logger.warning("[%d/%d] Failed to embed root cause #%d: %s",
                           i, len(pending), root_cause.id, e)

    logger.info("Embedded %d/%d root causes (%d failed)",
                result["generated"], result["total"], result["failed"])
    return result


async def find_similar_root_causes(
    store, embedder: EmbeddingProvider, text: str,
    threshold: float = 0.7, limit: int = 5,
) -> list[tuple[RootCause, float]]:
    """Rank catalog entries by cosine similarity to free text."""
    query = await embedder.embed(text)
    candidates = await store.root_causes_with_embedding()
    if not candidates:
        return []
    sims = cosine_similarities(query.vector, [rc.embedding for rc in candidates])
    ranked = [
        (rc, float(sim)) for rc, sim in zip(candidates, sims)
        if sim is not None and sim >= threshold
    ]
    ranked.sort(key=lambda pair: pair[1], reverse=True)
    return ranked[:limit]
