"""RAG pipelines for document ingestion and fiche search.

This module provides the IngestionPipeline and QueryPipeline classes.
Collaborators (embedding client, vector store, reformulator) are built
from the settings unless they are passed in explicitly.
"""

import logging
import time
from pathlib import Path
from typing import Callable, Iterable

from secouristia.config import Settings
from secouristia.errors import InvalidQueryError
from secouristia.models import (
    Chunk,
    Fiche,
    IndexedRecord,
    IngestionReport,
    SearchResponse,
    SourceDocument,
)
from secouristia.rag.embeddings import EmbeddingClient
from secouristia.rag.faiss_store import FaissStore
from secouristia.rag.formatter import ResultFormatter
from secouristia.rag.generator import QueryReformulator
from secouristia.rag.parser import CHAPTER_NAMES, StructuralParser, chapter_stats
from secouristia.rag.pdf_extractor import list_source_files, read_source_document
from secouristia.rag.retry import RetryPolicy
from secouristia.rag.search import HybridSearchEngine

logger = logging.getLogger(__name__)

EMPTY_RESULT_MESSAGE = (
    "Aucun document trouvé pour cette recherche. Essayez avec d'autres termes."
)


class IngestionPipeline:
    """Pipeline for parsing, embedding and storing source documents.

    Items are processed one at a time: a short pause follows every
    successful write and a longer one every failure, to stay under the
    rate limits of the external services. A failed item is counted and
    skipped; it never aborts the run.
    """

    def __init__(
        self,
        settings: Settings,
        embedder=None,
        store=None,
        parser: StructuralParser | None = None,
        retry: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize ingestion pipeline.

        Args:
            settings: Application settings.
            embedder: Embedding client; a watsonx.ai client by default.
            store: Vector store exposing ``write`` and ``flush``; a
                FaissStore saving once per document by default.
            parser: Structural parser; built from the chunk settings by default.
            retry: Retry policy wrapping every external call.
            sleep: Pause function, replaced in tests.
        """
        self.settings = settings
        self.embed = embedder if embedder is not None else EmbeddingClient(settings)
        # Saved once per document, not once per record
        self.vs = store if store is not None else FaissStore(settings, autosave=False)
        self.parser = parser or StructuralParser(
            chunk_size=settings.chunk_size,
            chunk_overlap=settings.chunk_overlap,
            min_chunk_chars=settings.min_chunk_chars,
        )
        self.retry = retry or RetryPolicy(
            max_attempts=settings.retry_max_attempts,
            delay_sec=settings.retry_delay_sec,
            sleep=sleep,
        )
        self.sleep = sleep

    def is_structured(self, name: str) -> bool:
        """Whether a source file is expected to contain fiche headers."""
        return self.settings.structured_marker.lower() in name.lower()

    def check_embedding_service(self) -> int:
        """Embed a test text and return the embedding dimension.

        Raises:
            ExternalServiceError: If the embedding service is unreachable.
        """
        return len(self._embed("test"))

    def split(self, document: SourceDocument) -> list[Fiche] | list[Chunk]:
        """Fiches for structured sources, chunks otherwise.

        A structured source without any header falls back to chunks.
        """
        if self.is_structured(document.name):
            fiches = self.parser.parse_fiches(document.text, document.name)
            if fiches:
                stats = chapter_stats(fiches)
                for chapter, count in stats.items():
                    logger.info(
                        f"  chapter {chapter}: {count} fiches ({CHAPTER_NAMES.get(chapter, '?')})"
                    )
                return fiches
            logger.warning(f"No fiche header found in {document.name}, falling back to chunks")
        return self.parser.split_chunks(document.text, document.name)

    def _embed(self, text: str) -> list[float]:
        embeddings = self.embed.embed_texts([text])
        return embeddings[0]

    def _ingest_item(self, item: Fiche | Chunk, label: str) -> bool:
        try:
            embedding = self.retry.call(self._embed, item.content, description=f"embedding {label}")
            if isinstance(item, Fiche):
                record = IndexedRecord.from_fiche(item, embedding)
            else:
                record = IndexedRecord.from_chunk(item, embedding)
            self.retry.call(self.vs.write, record, description=f"store write {label}")
        except Exception as e:
            logger.error(f"Failed to ingest {label}: {e}")
            self.sleep(self.settings.failure_backoff_sec)
            return False
        self.sleep(self.settings.pacing_delay_sec)
        return True

    def ingest_document(self, document: SourceDocument) -> IngestionReport:
        """Parse, embed and store one source document.

        Args:
            document: Extracted source document.

        Returns:
            Report with the numbers of stored and failed items.
        """
        kind = "structured" if self.is_structured(document.name) else "standard"
        logger.info(f"Processing {kind} document {document.name} ({len(document.text)} characters)")
        items = self.split(document)
        logger.info(f"{document.name}: {len(items)} items to import")

        imported = 0
        errors = 0
        for i, item in enumerate(items, start=1):
            label = f"fiche [{item.reference}]" if isinstance(item, Fiche) else f"chunk {i}"
            if self._ingest_item(item, label):
                imported += 1
                logger.debug(f"Imported {imported}/{len(items)} {label}")
            else:
                errors += 1

        if imported:
            try:
                self.retry.call(self.vs.flush, description=f"store save {document.name}")
            except Exception as e:
                logger.error(f"Failed to save {document.name}, {imported} items not persisted: {e}")
                errors += imported
                imported = 0

        logger.info(f"{document.name}: {imported} items imported, {errors} errors")
        return IngestionReport(imported=imported, errors=errors, documents=1)

    def ingest(self, documents: Iterable[SourceDocument]) -> IngestionReport:
        """Ingest documents sequentially and add up their reports."""
        report = IngestionReport()
        for document in documents:
            report = report.merge(self.ingest_document(document))
        return report

    def ingest_directory(
        self, docs_dir: str | Path | None = None, name_filter: str | None = None
    ) -> IngestionReport:
        """Extract and ingest every source file of a directory.

        Args:
            docs_dir: Directory to scan; the configured one by default.
            name_filter: Optional case-insensitive file-name substring
                (e.g. ``PSE``) limiting the run to one referential.

        Returns:
            Combined report. A file whose extraction fails counts as one error.
        """
        files = list_source_files(docs_dir or self.settings.documents_dir, name_filter)
        logger.info(f"{len(files)} source files found: {[p.name for p in files]}")

        report = IngestionReport()
        for path in files:
            try:
                document = read_source_document(path)
            except Exception as e:
                logger.error(f"Text extraction failed for {path.name}: {e}")
                report = report.merge(IngestionReport(errors=1))
                continue
            report = report.merge(self.ingest_document(document))
        return report


class QueryPipeline:
    """Pipeline turning a user question into formatted fiches.

    Reformulates the question into technical keywords, runs the hybrid
    search and formats the matches.
    """

    def __init__(
        self,
        settings: Settings,
        reformulator=None,
        engine: HybridSearchEngine | None = None,
        formatter: ResultFormatter | None = None,
        retry: RetryPolicy | None = None,
    ) -> None:
        """Initialize query pipeline.

        Args:
            settings: Application settings.
            reformulator: Object exposing ``reformulate(question) -> str``.
            engine: Hybrid search engine; built on watsonx.ai and FAISS by default.
            formatter: Result formatter.
            retry: Retry policy wrapping the reformulation and search calls.
        """
        self.settings = settings
        self.retry = retry or RetryPolicy(
            max_attempts=settings.retry_max_attempts,
            delay_sec=settings.retry_delay_sec,
        )
        self.reformulator = (
            reformulator if reformulator is not None else QueryReformulator(settings)
        )
        self.engine = engine or HybridSearchEngine(
            EmbeddingClient(settings), FaissStore(settings), settings.scoring_policy(), self.retry
        )
        self.formatter = formatter or ResultFormatter()

    def _reformulate(self, question: str) -> str:
        try:
            return (
                self.retry.call(self.reformulator.reformulate, question, description="query reformulation")
                or question
            )
        except Exception as e:
            logger.warning(f"Query reformulation failed: {e}, using original question")
            return question

    def search(self, question: str, category_filter: str | None = None) -> SearchResponse:
        """Answer a question with the most relevant fiches.

        Args:
            question: User question.
            category_filter: Optional referential filter (e.g. ``PSC``).

        Returns:
            Response with the fiches, or an explanatory message when
            nothing matched.

        Raises:
            InvalidQueryError: If the question is blank.
        """
        if not question or not question.strip():
            raise InvalidQueryError("La question est requise")
        question = question.strip()

        technical_query = self._reformulate(question)
        logger.info(f"Technical query: {technical_query!r}")

        results = self.engine.search(technical_query, question, category_filter)
        if not results:
            return SearchResponse(fiches=[], query=technical_query, message=EMPTY_RESULT_MESSAGE)

        return SearchResponse(fiches=self.formatter.format(results), query=technical_query)
