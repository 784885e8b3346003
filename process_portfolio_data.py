"""Validate, segment, embed and store the portfolio corpus."""

import argparse
import sys
from pathlib import Path

from portfolio_chat.data.portfolio import PORTFOLIO_DATA
from portfolio_chat.errors import IngestionError
from portfolio_chat.pipeline.ingestion import validate_document_format
from portfolio_chat.pipeline.orchestrator import create_chatbot


def print_distribution(distribution: dict[str, int]) -> None:
    for category, count in sorted(distribution.items()):
        print(f"  - {category}: {count} chunks")


def main():
    parser = argparse.ArgumentParser(
        description="Load labeled portfolio data into the vector store"
    )
    parser.add_argument(
        "--clear",
        "--force-replace",
        action="store_true",
        dest="clear",
        help="Clear existing chunks in each category before storing new ones",
    )
    parser.add_argument(
        "--file",
        type=Path,
        help="Labeled text file to load instead of the bundled portfolio data",
    )
    parser.add_argument(
        "--validate-only",
        action="store_true",
        help="Check the document format and exit",
    )

    args = parser.parse_args()
    document = args.file.read_text(encoding="utf-8") if args.file else PORTFOLIO_DATA

    print("Validating document format...")
    is_valid, errors = validate_document_format(document)
    if not is_valid:
        print("✗ Document format validation failed:")
        for error in errors:
            print(f"  - {error}")
        sys.exit(1)
    print("✓ Document format validation passed")
    if args.validate_only:
        return

    chatbot = create_chatbot()

    initial = chatbot.store.get_stats()
    print(f"\nCurrent database: {initial.total_chunks} chunks, {initial.total_tokens} tokens")

    print("\nProcessing and storing chunks...")
    try:
        result = chatbot.ingest_document(document, clear=args.clear)
    except IngestionError as e:
        print(f"✗ {e}")
        for error in e.errors:
            print(f"  - {error}")
        sys.exit(1)

    print(f"✓ Processing complete: {result.total_chunks} chunks, {result.total_tokens} tokens")
    print_distribution(result.category_distribution)
    if result.processing_errors:
        print("⚠️  Issues:")
        for error in result.processing_errors:
            print(f"  - {error}")

    final = chatbot.store.get_stats()
    print(f"\nFinal database: {final.total_chunks} chunks, {final.total_tokens} tokens")
    print_distribution(final.category_counts)


if __name__ == "__main__":
    main()
