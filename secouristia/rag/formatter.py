"""Maps search results back to display-ready fiche views."""

import logging
import re

from secouristia.models import FicheView, SearchResult
from secouristia.rag.parser import (
    FICHE_HEADER_PATTERN,
    FICHE_REFERENCE_PATTERN,
    detect_level,
    fiche_type,
)

logger = logging.getLogger(__name__)

# What follows the header bracket: "PSE① Hémorragie externe"
TITLE_TAIL_PATTERN = re.compile(r"\s*(?:PSE\s*[①②12]?|PSC\s*[①1]?|SST)?\s*(.*)", re.IGNORECASE)


def clean_title(title: str) -> str:
    """Drop underscores, a trailing page number and extra spaces."""
    title = re.sub(r"_+", " ", title)
    title = re.sub(r"\s+\d+\s*$", "", title)
    return re.sub(r"\s+", " ", title).strip()


class ResultFormatter:
    """Turns raw search results into FicheView objects.

    The first line of each record is read with the same header rule the
    ingestion parser uses; when it is a fiche header it is removed from
    the body.
    """

    def format_one(self, result: SearchResult) -> FicheView:
        content = result.content.strip()
        first_line, _, rest = content.partition("\n")
        header = FICHE_HEADER_PATTERN.match(first_line.strip())

        reference = result.fiche_ref or ""
        type_code = None
        date = ""
        level = None
        title = ""
        body = content

        if header:
            reference = f"{header.group('chapter')}{header.group('type')}{header.group('number')}"
            type_code = header.group("type")
            date = f"{header.group('month')}-{header.group('year')}"
            tail = first_line.strip()[header.end():]
            level = detect_level(tail)
            title = clean_title(TITLE_TAIL_PATTERN.match(tail).group(1))
            body = rest.strip()
        elif reference:
            ref_match = FICHE_REFERENCE_PATTERN.fullmatch(reference)
            type_code = ref_match.group("type") if ref_match else None

        kind, type_name = fiche_type(type_code) if type_code else (None, "Document")

        return FicheView(
            reference=reference,
            fiche_type=kind or "unknown",
            fiche_type_name=type_name if kind else "Document",
            title=title or "Document",
            date=date,
            level=level,
            content=body,
            source=result.source,
            similarity=result.similarity,
        )

    def format(self, results: list[SearchResult]) -> list[FicheView]:
        """Format results, keeping the first view of each reference.

        Views without reference (plain chunks) are always kept.
        """
        seen_refs: set[str] = set()
        views: list[FicheView] = []
        for result in results:
            view = self.format_one(result)
            if view.reference:
                if view.reference in seen_refs:
                    logger.debug(f"Dropping duplicate fiche [{view.reference}]")
                    continue
                seen_refs.add(view.reference)
            views.append(view)
        return views
