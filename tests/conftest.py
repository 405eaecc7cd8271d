import sys
from pathlib import Path

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from secouristia.config import Settings  # noqa: E402
from secouristia.models import IndexedRecord, SearchResult  # noqa: E402

PSE_TEXT = (
    "[05PR08 / 12-2022] PSE① Hémorragie externe\n"
    "Appuyer fortement sur la plaie avec les doigts ou la paume de la main.\n"
    "Allonger la victime et alerter les secours.\n"
    "[05PR09 / 12-2022] PSE① Autre fiche\n"
    "Contenu de la seconde fiche.\n"
)


class FakeEmbedder:
    """Returns a fixed vector, or raises when ``error`` is set."""

    def __init__(self, vector=None, error=None, fail_times=0):
        self.vector = vector or [1.0, 0.0, 0.0]
        self.error = error
        self.fail_times = fail_times
        self.calls: list[str] = []

    def _next(self, text):
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        if self.fail_times > 0:
            self.fail_times -= 1
            raise RuntimeError("embedding service unavailable")
        return list(self.vector)

    def embed_query(self, text):
        return self._next(text)

    def embed_texts(self, texts):
        return [self._next(t) for t in texts]


class FakeStore:
    """In-memory stand-in for the vector store."""

    def __init__(self, lexical=None, vector=None, vector_error=None, write_errors=0, flush_errors=0, vector_failures=0):
        self.lexical = lexical or []
        self.vector = vector or []
        self.vector_error = vector_error
        self.write_errors = write_errors
        self.flush_errors = flush_errors
        self.flushes = 0
        self.vector_failures = vector_failures
        self.written: list[IndexedRecord] = []
        self.substring_calls: list[tuple] = []
        self.neighbor_calls: list[tuple] = []

    def substring_filter(self, terms, category_filter=None, limit=10):
        self.substring_calls.append((list(terms), category_filter, limit))
        return list(self.lexical)[:limit]

    def nearest_neighbors(self, query_embedding, min_similarity, max_count, category_filter=None):
        self.neighbor_calls.append((query_embedding, min_similarity, max_count, category_filter))
        if self.vector_error is not None:
            raise self.vector_error
        if self.vector_failures > 0:
            self.vector_failures -= 1
            raise RuntimeError("index busy")
        return list(self.vector)[:max_count]

    def write(self, record):
        if self.write_errors > 0:
            self.write_errors -= 1
            raise RuntimeError("insert failed")
        self.written.append(record)
        return len(self.written)

    def flush(self):
        if self.flush_errors > 0:
            self.flush_errors -= 1
            raise OSError("disk full")
        self.flushes += 1


class FakeReformulator:
    def __init__(self, output=None, error=None, fail_times=0):
        self.output = output
        self.error = error
        self.fail_times = fail_times
        self.questions: list[str] = []

    def reformulate(self, question):
        self.questions.append(question)
        if self.error is not None:
            raise self.error
        if self.fail_times > 0:
            self.fail_times -= 1
            raise RuntimeError("model overloaded")
        return self.output if self.output is not None else question


def record(id, content, source="Referentiel_PSE.pdf", fiche_ref=None):
    return IndexedRecord(id=id, content=content, source=source, fiche_ref=fiche_ref)


def result(id, content, similarity, source="Referentiel_PSE.pdf", fiche_ref=None):
    return SearchResult(id=id, content=content, source=source, similarity=similarity, fiche_ref=fiche_ref)


@pytest.fixture
def settings(tmp_path) -> Settings:
    s = Settings.from_env()
    s.faiss_index_path = str(tmp_path / "index.faiss")
    s.faiss_meta_path = str(tmp_path / "meta.json")
    s.documents_dir = str(tmp_path / "documents")
    s.pacing_delay_sec = 0.2
    s.failure_backoff_sec = 3.0
    s.retry_max_attempts = 1
    s.structured_marker = "pse"
    s.chunk_size = 500
    s.chunk_overlap = 100
    s.min_chunk_chars = 50
    return s


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps):
    return sleeps.append
