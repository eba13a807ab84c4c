"""FAISS vector index over chunk embeddings.

Vectors are L2-normalised and stored in an inner-product index, so the
search score is cosine similarity (1 - cosine distance). Each vector is
keyed by its chunk row id; SQLite stays the source of truth and the index
is rebuilt from it at startup.
"""
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import faiss
import numpy as np
import structlog

from coursechat import config

logger = structlog.get_logger()


class FAISSVectorStore:
    """Cosine-similarity index keyed by chunk id."""

    def __init__(self, dimension: int = None):
        """Initialize an empty index.

        Args:
            dimension: Embedding dimension (default from config)
        """
        self.dimension = dimension or config.EMBEDDING_DIMENSION
        self.index = self._new_index()

        logger.info(
            "faiss_store_initialized",
            dimension=self.dimension,
            index_type="IndexIDMap2(IndexFlatIP)",
        )

    def _new_index(self) -> faiss.Index:
        return faiss.IndexIDMap2(faiss.IndexFlatIP(self.dimension))

    @property
    def ntotal(self) -> int:
        return self.index.ntotal

    def _as_matrix(self, embeddings: Sequence[Sequence[float]]) -> np.ndarray:
        vectors = np.array(embeddings, dtype=np.float32)
        if vectors.ndim != 2 or vectors.shape[1] != self.dimension:
            got = vectors.shape[-1] if vectors.ndim else 0
            raise ValueError(
                f"Embedding dimension mismatch: expected {self.dimension}, got {got}"
            )
        vectors = np.ascontiguousarray(vectors)
        faiss.normalize_L2(vectors)
        return vectors

    def add_vectors(self, ids: List[int], embeddings: Sequence[Sequence[float]]) -> None:
        """Add vectors under the given chunk ids.

        Raises:
            ValueError: On id/vector count or dimension mismatch
        """
        if len(ids) != len(embeddings):
            raise ValueError(
                f"Got {len(ids)} ids for {len(embeddings)} embeddings"
            )
        if not ids:
            return

        vectors = self._as_matrix(embeddings)
        self.index.add_with_ids(vectors, np.array(ids, dtype=np.int64))

        logger.info("vectors_added", count=len(ids), total_vectors=self.ntotal)

    def remove_ids(self, ids: Iterable[int]) -> int:
        """Remove vectors by chunk id and return how many were dropped."""
        ids = list(ids)
        if not ids:
            return 0
        removed = self.index.remove_ids(np.array(ids, dtype=np.int64))
        logger.info("vectors_removed", count=removed, total_vectors=self.ntotal)
        return removed

    def load(self, rows: Iterable[Tuple[int, np.ndarray]]) -> int:
        """Replace the index contents with (chunk id, vector) rows."""
        self.index = self._new_index()
        ids: List[int] = []
        vectors: List[np.ndarray] = []
        skipped = 0
        for chunk_id, vector in rows:
            if len(vector) != self.dimension:
                skipped += 1
                continue
            ids.append(chunk_id)
            vectors.append(vector)

        if ids:
            self.add_vectors(ids, np.vstack(vectors))
        if skipped:
            logger.warning("vectors_skipped_dimension_mismatch", count=skipped)

        logger.info("faiss_index_loaded", vector_count=self.ntotal)
        return self.ntotal

    def search(
        self,
        query_embedding: Sequence[float],
        top_k: int,
        allowed_ids: Optional[Iterable[int]] = None,
    ) -> Tuple[List[int], List[float]]:
        """Find the chunks most similar to a query vector.

        Args:
            query_embedding: Query vector
            top_k: Maximum number of results
            allowed_ids: Restrict the search to these chunk ids

        Returns:
            Tuple of (chunk_ids, similarities), best match first
        """
        query_vector = self._as_matrix([query_embedding])

        params = None
        if allowed_ids is not None:
            allowed = np.array(sorted(set(allowed_ids)), dtype=np.int64)
            if allowed.size == 0:
                return [], []
            params = faiss.SearchParameters(sel=faiss.IDSelectorBatch(allowed))
            top_k = min(top_k, int(allowed.size))

        top_k = min(top_k, self.ntotal)
        if top_k <= 0:
            return [], []

        if params is None:
            similarities, indices = self.index.search(query_vector, top_k)
        else:
            similarities, indices = self.index.search(query_vector, top_k, params=params)

        chunk_ids: List[int] = []
        scores: List[float] = []
        for chunk_id, score in zip(indices[0].tolist(), similarities[0].tolist()):
            if chunk_id == -1:
                continue
            chunk_ids.append(chunk_id)
            scores.append(score)

        logger.debug("vector_search_completed", top_k=top_k, results_found=len(chunk_ids))
        return chunk_ids, scores

    def get_stats(self) -> Dict:
        return {
            "vector_count": self.ntotal,
            "dimension": self.dimension,
        }
