"""Data models for the retrieval core.

This module defines Pydantic models for source documents, parsed fiches
and chunks, persisted records, search results and the views handed to
callers.
"""

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Category = Literal["PSE", "PSC", "SST", "generic"]
FicheType = Literal["knowledge", "procedure", "technique"]


class SourceDocument(BaseModel):
    """Raw text of one source file.

    Attributes:
        name: File name the text was extracted from.
        text: Extracted text.
        category: Referential family derived from the file name.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    text: str
    category: Category = "generic"


class Fiche(BaseModel):
    """A self-contained reference card parsed from a structured source.

    Attributes:
        reference: Chapter, type code and sequence number, e.g. ``05PR08``.
        chapter: Two-digit chapter code.
        chapter_name: Human name of the chapter.
        fiche_type: Kind of card.
        fiche_type_code: Two-letter type code (AC, PR, FT).
        fiche_type_name: Human name of the type.
        fiche_number: Sequence digits as written in the header.
        update_date: Month and year of the last update (MM-YYYY).
        level: Training level (1 or 2) when the card states one.
        content: Normalized card text, header line included.
        source: File name of the source document.
        start: Offset of the card's span in the cleaned text.
        end: End offset (exclusive) of the card's span in the cleaned text.
    """

    reference: str
    chapter: str
    chapter_name: str
    fiche_type: FicheType | None
    fiche_type_code: str
    fiche_type_name: str
    fiche_number: str
    update_date: str
    level: int | None = None
    content: str
    source: str = ""
    start: int = 0
    end: int = 0


class Chunk(BaseModel):
    """A plain-text window cut from an unstructured source.

    Attributes:
        content: Window text, trimmed.
        source: File name of the source document.
        start: Offset of the window in the cleaned text.
        end: End offset (exclusive) of the window in the cleaned text.
    """

    content: str
    source: str = ""
    start: int = 0
    end: int = 0


class IndexedRecord(BaseModel):
    """A record as persisted in the vector store.

    Fiche metadata fields are ``None`` for chunk records.
    """

    id: int | None = None
    content: str
    source: str
    embedding: list[float] = Field(default_factory=list, repr=False)
    chapter: str | None = None
    chapter_name: str | None = None
    fiche_type: str | None = None
    fiche_type_name: str | None = None
    fiche_ref: str | None = None
    level: int | None = None
    update_date: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_fiche(cls, fiche: Fiche, embedding: list[float]) -> "IndexedRecord":
        return cls(
            content=fiche.content,
            source=fiche.source,
            embedding=embedding,
            chapter=fiche.chapter,
            chapter_name=fiche.chapter_name,
            fiche_type=fiche.fiche_type_code,
            fiche_type_name=fiche.fiche_type_name,
            fiche_ref=fiche.reference,
            level=fiche.level,
            update_date=fiche.update_date,
        )

    @classmethod
    def from_chunk(cls, chunk: Chunk, embedding: list[float]) -> "IndexedRecord":
        return cls(content=chunk.content, source=chunk.source, embedding=embedding)


class SearchResult(BaseModel):
    """A matched record, rebuilt fresh for every query.

    Attributes:
        id: Store identity of the record.
        content: Record text.
        source: File name of the source document.
        similarity: Score on a 0-1 scale after re-scoring.
        fiche_ref: Fiche reference when the record is a fiche.
    """

    id: int
    content: str
    source: str
    similarity: float
    fiche_ref: str | None = None


class FicheView(BaseModel):
    """Display-ready view of a search result."""

    reference: str
    fiche_type: FicheType | Literal["unknown"]
    fiche_type_name: str
    title: str
    date: str
    level: int | None = None
    content: str
    source: str
    similarity: float


class SearchResponse(BaseModel):
    """Outcome of a query.

    Attributes:
        fiches: Formatted results, best first.
        query: Technical query actually used for retrieval.
        message: Explanation shown when nothing matched.
    """

    fiches: list[FicheView] = Field(default_factory=list)
    query: str = ""
    message: str | None = None


class IngestionReport(BaseModel):
    """Counters accumulated by an ingestion run."""

    imported: int = 0
    errors: int = 0
    documents: int = 0

    def merge(self, other: "IngestionReport") -> "IngestionReport":
        return IngestionReport(
            imported=self.imported + other.imported,
            errors=self.errors + other.errors,
            documents=self.documents + other.documents,
        )
