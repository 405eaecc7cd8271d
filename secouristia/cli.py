"""Command-line entry point importing the referential documents."""

import argparse
import logging
import sys

from dotenv import load_dotenv

from secouristia.config import Settings
from secouristia.errors import ConfigurationError
from secouristia.rag.pipeline import IngestionPipeline

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Parse, embed and index the first-aid referential documents."
    )
    parser.add_argument(
        "filter",
        nargs="?",
        default=None,
        help="Only import files whose name contains this text (e.g. PSE, PSC, SST).",
    )
    parser.add_argument(
        "--docs-dir",
        default=None,
        help="Directory holding the source PDFs (default: DOCUMENTS_DIR).",
    )
    parser.add_argument(
        "--skip-check",
        action="store_true",
        help="Do not check the embedding service before importing.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    load_dotenv()
    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        settings.validate_watsonx()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    pipeline = IngestionPipeline(settings)

    if not args.skip_check:
        try:
            dim = pipeline.check_embedding_service()
        except Exception as e:
            print(f"Embedding service check failed: {e}", file=sys.stderr)
            return 1
        logger.info(f"Embedding service OK, dimension {dim}")

    if args.filter:
        logger.info(f"Filter applied: {args.filter!r}")
    report = pipeline.ingest_directory(args.docs_dir, args.filter)

    if report.documents == 0 and report.errors == 0:
        print("No document to import.")
        return 0
    print(
        f"Import finished: {report.documents} documents, "
        f"{report.imported} items imported, {report.errors} errors"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
