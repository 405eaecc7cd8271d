"""Structural parsing of extracted referential text.

Structured sources (the PSE referentials) are cut into fiches, one per
header such as ``[07PR13 / 09-2019] PSE② Brûlures``. Sources without
headers fall back to overlapping fixed-size chunks.
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass

from secouristia.models import Chunk, Fiche, FicheType

logger = logging.getLogger(__name__)

# <chapter: 2 digits><type: AC|PR|FT><sequence digits>, e.g. 05PR08
FICHE_REFERENCE = r"(?P<chapter>\d{2})(?P<type>AC|PR|FT)(?P<number>\d+)"
FICHE_REFERENCE_PATTERN = re.compile(FICHE_REFERENCE)

# [<reference> / <month: 2 digits>-<year: 4 digits>]
FICHE_HEADER_PATTERN = re.compile(
    r"\[" + FICHE_REFERENCE + r"\s*/\s*(?P<month>\d{2})-(?P<year>\d{4})\]"
)

LEVEL_1_PATTERN = re.compile(r"PSE\s*[①1]", re.IGNORECASE)
LEVEL_2_PATTERN = re.compile(r"PSE\s*[②2]", re.IGNORECASE)
LEVEL_SCAN_CHARS = 200

CHAPTER_NAMES: dict[str, str] = {
    "01": "Attitude et comportement",
    "02": "Bilans",
    "03": "Protection et sécurité",
    "04": "Hygiène et asepsie",
    "05": "Urgences vitales",
    "06": "Malaises et affections",
    "07": "Atteintes circonstancielles",
    "08": "Traumatismes",
    "09": "Souffrance psychique",
    "10": "Relevage et brancardage",
    "11": "Situations à nombreuses victimes",
    "12": "Divers",
}

FICHE_TYPES: dict[str, tuple[FicheType, str]] = {
    "AC": ("knowledge", "Apport de Connaissances"),
    "PR": ("procedure", "Procédure"),
    "FT": ("technique", "Fiche Technique"),
}

SENTENCE_BREAKS = (".", "!", "?", "\n")


def chapter_name(code: str) -> str:
    """Human name of a chapter, ``Chapitre <code>`` when unknown."""
    return CHAPTER_NAMES.get(code, f"Chapitre {code}")


def fiche_type(code: str) -> tuple[FicheType | None, str]:
    """Kind and human name of a two-letter type code.

    Unknown codes map to ``(None, code)``.
    """
    return FICHE_TYPES.get(code, (None, code))


def detect_level(text: str) -> int | None:
    """Detect the PSE level stated at the top of a fiche.

    Args:
        text: Fiche text; only its first 200 characters are scanned.

    Returns:
        1, 2 or None when no level marker is present.
    """
    head = text[:LEVEL_SCAN_CHARS]
    if LEVEL_1_PATTERN.search(head):
        return 1
    if LEVEL_2_PATTERN.search(head):
        return 2
    return None


def clean_text(text: str) -> str:
    """Normalize line endings and cap blank runs before the header scan."""
    cleaned = text.replace("\r\n", "\n")
    cleaned = re.sub(r"\n{4,}", "\n\n\n", cleaned)
    return cleaned.strip()


def normalize_content(text: str) -> str:
    """Collapse long space runs and blank-line runs inside a fiche."""
    content = text.strip()
    content = re.sub(r"\n\s*\n\s*\n", "\n\n", content)
    content = re.sub(r" {3,}", "  ", content)
    return content


def header_offsets(text: str) -> list[re.Match]:
    """Pass 1: every fiche header, in order of appearance."""
    return list(FICHE_HEADER_PATTERN.finditer(text))


@dataclass
class StructuralParser:
    """Turns raw document text into fiches or overlapping chunks.

    Attributes:
        chunk_size: Upper bound of a chunk window, in characters.
        chunk_overlap: Characters shared by two consecutive windows.
        min_chunk_chars: Chunks shorter than this are dropped as noise.
        short_fiche_chars: Fiches shorter than this are logged.
        long_fiche_chars: Fiches longer than this are logged.
    """

    chunk_size: int = 500
    chunk_overlap: int = 100
    min_chunk_chars: int = 50
    short_fiche_chars: int = 100
    long_fiche_chars: int = 5000

    def parse(self, raw_text: str, source: str = "") -> list[Fiche | Chunk]:
        """Fiches when the text carries headers, chunks otherwise."""
        fiches = self.parse_fiches(raw_text, source)
        if fiches:
            return list(fiches)
        return list(self.split_chunks(raw_text, source))

    def parse_fiches(self, raw_text: str, source: str = "") -> list[Fiche]:
        """Cut a structured text into fiches.

        Each fiche spans from its own header up to the next header, the
        last one up to the end of the text, so fiches partition the cleaned
        text from the first header onwards.

        Args:
            raw_text: Text produced by the extractor.
            source: File name recorded on each fiche.

        Returns:
            Fiches in document order; empty when no header is present.
        """
        text = clean_text(raw_text)
        matches = header_offsets(text)
        if not matches:
            return []

        if matches[0].start() > 0:
            logger.debug(
                f"Ignoring {matches[0].start()} characters before the first fiche of {source or 'document'}"
            )

        fiches: list[Fiche] = []
        for i, match in enumerate(matches):
            start = match.start()
            end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
            fiches.append(self._build_fiche(match, text[start:end], source, start, end))

        logger.info(f"{len(fiches)} fiches detected in {source or 'document'}")
        return fiches

    def _build_fiche(
        self, match: re.Match, span: str, source: str, start: int, end: int
    ) -> Fiche:
        chapter = match.group("chapter")
        type_code = match.group("type")
        number = match.group("number")
        reference = f"{chapter}{type_code}{number}"
        kind, type_name = fiche_type(type_code)
        content = normalize_content(span)

        body_len = len(content) - len(match.group(0))
        if len(content) > self.long_fiche_chars:
            logger.warning(f"Fiche [{reference}] is very long: {len(content)} characters")
        elif body_len <= 0:
            logger.warning(f"Fiche [{reference}] has an empty body")
        elif len(content) < self.short_fiche_chars:
            logger.warning(f"Fiche [{reference}] is very short: {len(content)} characters")

        return Fiche(
            reference=reference,
            chapter=chapter,
            chapter_name=chapter_name(chapter),
            fiche_type=kind,
            fiche_type_code=type_code,
            fiche_type_name=type_name,
            fiche_number=number,
            update_date=f"{match.group('month')}-{match.group('year')}",
            level=detect_level(span),
            content=content,
            source=source,
            start=start,
            end=end,
        )

    def split_chunks(self, raw_text: str, source: str = "") -> list[Chunk]:
        """Split an unstructured text into overlapping windows.

        Windows end on the last sentence terminator or newline found past
        their halfway point, otherwise at the raw size limit. The next
        window starts ``chunk_overlap`` characters before the previous end.

        Args:
            raw_text: Text produced by the extractor.
            source: File name recorded on each chunk.

        Returns:
            Chunks in document order.
        """
        text = raw_text.replace("\r\n", "\n")
        text = re.sub(r"[^\S\n]+", " ", text)
        text = re.sub(r"\n{3,}", "\n\n", text).strip()
        text_len = len(text)

        chunks: list[Chunk] = []
        start = 0
        while start < text_len:
            end = min(start + self.chunk_size, text_len)
            if end < text_len:
                break_point = max(text.rfind(mark, start, end) for mark in SENTENCE_BREAKS)
                if break_point > start + self.chunk_size / 2:
                    end = break_point + 1

            content = text[start:end].strip()
            if len(content) >= self.min_chunk_chars:
                chunks.append(Chunk(content=content, source=source, start=start, end=end))

            if end >= text_len:
                break
            next_start = end - self.chunk_overlap
            start = next_start if next_start > start else end

        return chunks


def chapter_stats(fiches: list[Fiche]) -> dict[str, int]:
    """Number of fiches per chapter code, sorted by chapter."""
    counts = Counter(fiche.chapter for fiche in fiches)
    return dict(sorted(counts.items()))
