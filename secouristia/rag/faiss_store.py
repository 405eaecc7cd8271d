import json
import logging
import os
from typing import Any, Dict, List

import faiss
import numpy as np

from secouristia.config import Settings
from secouristia.errors import ExternalServiceError
from secouristia.models import IndexedRecord, SearchResult

logger = logging.getLogger(__name__)


def _source_matches(source: str, category_filter: str | None) -> bool:
    return not category_filter or category_filter.lower() in source.lower()


def _unit_rows(vectors: List[List[float]]) -> np.ndarray:
    # cosine similarity through inner product
    arr = np.array(vectors, dtype=np.float32)
    return arr / (np.linalg.norm(arr, axis=1, keepdims=True) + 1e-12)


class FaissStore:
    """Vector store backed by a flat FAISS index and a JSON metadata file.

    Record ids are sequential integers starting at 1; record ``n`` sits at
    position ``n - 1`` of both the index and the metadata list.
    """

    def __init__(self, settings: Settings, autosave: bool = True):
        """Open the store, loading any index already on disk.

        Args:
            settings: Application settings.
            autosave: Persist after every write. When False, writes stay in
                memory until ``flush()``, which batch loaders call once.
        """
        self.settings = settings
        self.autosave = autosave
        self.dirty = False
        self.index_path = settings.faiss_index_path
        self.meta_path = settings.faiss_meta_path
        for path in (self.index_path, self.meta_path):
            os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        self.index = None
        self.metadata: List[Dict[str, Any]] = []
        self._load()

    def _load(self) -> None:
        if not (os.path.exists(self.index_path) and os.path.exists(self.meta_path)):
            # Index is created on first write, from the vector size
            return
        self.index = faiss.read_index(self.index_path)
        with open(self.meta_path, "r", encoding="utf-8") as f:
            self.metadata = json.load(f)
        if len(self.metadata) != self.index.ntotal:
            raise RuntimeError(
                f"FAISS index ({self.index.ntotal} vectors) and metadata ({len(self.metadata)} records) "
                f"are out of sync. Delete {self.index_path} and {self.meta_path} and re-run the ingestion."
            )
        logger.info(f"Loaded {len(self.metadata)} records from {self.index_path}")

    def _save(self) -> None:
        faiss.write_index(self.index, self.index_path)
        with open(self.meta_path, "w", encoding="utf-8") as f:
            json.dump(self.metadata, f, ensure_ascii=False)

    def _ensure_index(self, dim: int) -> None:
        if self.index is not None and self.index.ntotal > 0:
            if self.index.d != dim:
                raise ExternalServiceError(
                    f"Embedding dimension {dim} does not match the stored index ({self.index.d}). "
                    f"Use the model the index was built with, or delete {self.index_path} and "
                    f"{self.meta_path} and re-run the ingestion."
                )
            return
        if dim != self.settings.embedding_dim:
            logger.warning(f"Embedding dimension {dim} differs from EMBEDDING_DIM={self.settings.embedding_dim}")
        self.index = faiss.IndexFlatIP(dim)

    def _record(self, position: int) -> IndexedRecord:
        return IndexedRecord.model_validate(self.metadata[position])

    def count(self) -> int:
        return len(self.metadata)

    def write(self, record: IndexedRecord) -> int:
        """Append a record, persisting the store in autosave mode.

        A failed save rolls the record back, so retrying the write never
        stores it twice.

        Returns:
            The id assigned to the record.

        Raises:
            ExternalServiceError: If the vector is empty or its dimension
                does not match the existing index.
        """
        if not record.embedding:
            raise ExternalServiceError("Cannot store a record without embedding")
        vector = _unit_rows([record.embedding])
        self._ensure_index(vector.shape[1])
        position = len(self.metadata)
        rec_id = position + 1
        self.index.add(vector)
        self.metadata.append(
            record.model_copy(update={"id": rec_id}).model_dump(mode="json", exclude={"embedding"})
        )
        if not self.autosave:
            self.dirty = True
            return rec_id
        try:
            self._save()
        except Exception:
            self.index.remove_ids(np.array([position], dtype=np.int64))
            self.metadata.pop()
            raise
        return rec_id

    def flush(self) -> None:
        """Persist writes buffered since the last save."""
        if self.dirty and self.index is not None:
            self._save()
            self.dirty = False

    def nearest_neighbors(
        self,
        query_embedding: List[float],
        min_similarity: float,
        max_count: int,
        category_filter: str | None = None,
    ) -> List[SearchResult]:
        """Records most similar to ``query_embedding``, best first.

        Only records whose cosine similarity is strictly above
        ``min_similarity`` and whose source contains ``category_filter`` are
        returned.
        """
        if self.index is None or self.index.ntotal == 0:
            return []
        q = _unit_rows([query_embedding])
        if q.shape[1] != self.index.d:
            raise ExternalServiceError(
                f"Query embedding dimension {q.shape[1]} does not match index dimension {self.index.d}"
            )
        # Search the whole index when filtering, the filter may reject the top hits
        search_k = self.index.ntotal if category_filter else min(max_count, self.index.ntotal)
        scores, idxs = self.index.search(q, search_k)
        hits: List[SearchResult] = []
        for score, idx in zip(scores[0].tolist(), idxs[0].tolist()):
            if idx < 0 or idx >= len(self.metadata) or score <= min_similarity:
                continue
            m = self.metadata[idx]
            if not _source_matches(m["source"], category_filter):
                continue
            hits.append(
                SearchResult(
                    id=m["id"],
                    content=m["content"],
                    source=m["source"],
                    similarity=float(score),
                    fiche_ref=m.get("fiche_ref"),
                )
            )
            if len(hits) >= max_count:
                break
        return hits

    def substring_filter(
        self,
        terms: List[str],
        category_filter: str | None = None,
        limit: int = 10,
    ) -> List[IndexedRecord]:
        """Records whose content contains every term, case-insensitively."""
        needles = [t.lower() for t in terms if t]
        hits: List[IndexedRecord] = []
        for position, m in enumerate(self.metadata):
            content = m["content"].lower()
            if all(n in content for n in needles) and _source_matches(m["source"], category_filter):
                hits.append(self._record(position))
                if len(hits) >= limit:
                    break
        return hits

    def exact_lookup(self, fiche_ref: str) -> IndexedRecord | None:
        for position, m in enumerate(self.metadata):
            if m.get("fiche_ref") == fiche_ref:
                return self._record(position)
        return None

    def by_category(self, chapter: str) -> List[IndexedRecord]:
        """Fiches of one chapter, ordered by reference."""
        records = [self._record(i) for i, m in enumerate(self.metadata) if m.get("chapter") == chapter]
        return sorted(records, key=lambda r: r.fiche_ref or "")

    def by_type(self, type_code: str) -> List[IndexedRecord]:
        """Fiches of one type (AC, PR, FT), ordered by chapter then reference."""
        records = [self._record(i) for i, m in enumerate(self.metadata) if m.get("fiche_type") == type_code]
        return sorted(records, key=lambda r: (r.chapter or "", r.fiche_ref or ""))

    def reset(self) -> None:
        """Drop every record, on disk too."""
        self.index = None
        self.metadata = []
        self.dirty = False
        for path in (self.index_path, self.meta_path):
            if os.path.exists(path):
                os.remove(path)
        logger.info("Vector store reset")
