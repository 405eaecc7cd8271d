from pathlib import Path
from typing import BinaryIO, List
import logging

from pypdf import PdfReader

from secouristia.models import Category, SourceDocument

logger = logging.getLogger(__name__)

SOURCE_SUFFIXES = (".pdf", ".txt")
CATEGORY_MARKERS: tuple[Category, ...] = ("PSE", "PSC", "SST")


def extract_text_per_page(fileobj: BinaryIO) -> List[str]:
    reader = PdfReader(fileobj)
    return [page.extract_text() or "" for page in reader.pages]


def extract_text(fileobj: BinaryIO) -> str:
    """Whole text of a PDF, pages separated by a newline.

    Line breaks are kept: fiche headers and titles sit on their own line.
    """
    return "\n".join(extract_text_per_page(fileobj))


def category_from_name(name: str) -> Category:
    """Referential family of a source file, ``generic`` when unknown."""
    upper = name.upper()
    for marker in CATEGORY_MARKERS:
        if marker in upper:
            return marker
    return "generic"


def list_source_files(docs_dir: str | Path, name_filter: str | None = None) -> List[Path]:
    """PDF and text files of ``docs_dir`` whose name contains ``name_filter``.

    Args:
        docs_dir: Directory to scan (not recursive).
        name_filter: Optional case-insensitive file-name substring.

    Returns:
        Matching paths sorted by name.
    """
    docs_path = Path(docs_dir)
    if not docs_path.is_dir():
        logger.warning(f"Documents directory does not exist: {docs_path}")
        return []
    files = sorted(
        p for p in docs_path.iterdir() if p.is_file() and p.suffix.lower() in SOURCE_SUFFIXES
    )
    if name_filter:
        files = [p for p in files if name_filter.lower() in p.name.lower()]
    return files


def read_source_document(path: str | Path) -> SourceDocument:
    """Extract the text of one source file."""
    path = Path(path)
    if path.suffix.lower() == ".txt":
        text = path.read_text(encoding="utf-8")
    else:
        with open(path, "rb") as f:
            text = extract_text(f)
    logger.info(f"{path.name}: {len(text)} characters extracted")
    return SourceDocument(name=path.name, text=text, category=category_from_name(path.name))
