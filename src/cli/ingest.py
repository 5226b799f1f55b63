# =============================================================================
# src/cli/ingest.py -- CLI Ingest Command (regulatory knowledge base)
# =============================================================================
#
# Standalone CLI for loading regulatory documents (customs circulars, notes,
# decisions, laws, decrees) into the knowledge base without going through
# the HTTP API.  It builds the same IngestionService as the web app.
#
# Supported subcommands:
#
#   file   -- Ingest one PDF (or .txt) in a single invocation.  PDFs above
#            the per-call page cap are still split into sub-batches inside
#            that one invocation.
#   batch  -- Client-side batch driver: sends page ranges one invocation at a
#            time.  The first batch creates the source; later batches append
#            to it with its source_id.  Stops on already_complete or once
#            the last page has been processed.
#
# Usage examples:
#   python -m src.cli.ingest file circulaire_4601.pdf --type circular --ref 4601/311
#   python -m src.cli.ingest batch tarif_2024.pdf --type decree --ref 2-24-123 \
#       --batch-size 5
# =============================================================================

"""Standalone CLI for ingesting regulatory documents.

Usage::

    python -m src.cli.ingest file /path/to/circulaire.pdf --type circular --ref 4601/311

    python -m src.cli.ingest batch /path/to/large.pdf --type decree --ref 2-24-123 \\
        --batch-size 5

No extra dependencies beyond the core project requirements.
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import sys
from pathlib import Path

from src.config.settings import Settings
from src.models.legal import IngestionRequest, IngestionResult
from src.utils.errors import RegDocError

_SOURCE_TYPES = ("circular", "note", "decision", "law", "decree")


def _build_ingestion_service(app_settings: Settings):  # noqa: ANN202
    """Construct the ingestion service and its metadata store.

    Imports are deferred so ``--help`` stays fast.

    Returns
    -------
    tuple[IngestionService, SQLiteMetadataStore]
    """
    from src.config.loader import load_config
    from src.models.resilience import CircuitBreakerConfig
    from src.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
    from src.providers.extraction.anthropic_extraction_provider import (
        AnthropicExtractionProvider,
    )
    from src.providers.store.sqlite_metadata_store import SQLiteMetadataStore
    from src.resilience.circuit_breaker import CircuitBreakerRegistry
    from src.resilience.retry import load_retry_presets
    from src.services.ingestion.chunker import TextChunker
    from src.services.ingestion.ingestion_service import IngestionService
    from src.services.ingestion.pdf_splitter import PdfSplitter

    config = load_config(settings=app_settings)
    presets = load_retry_presets(config)
    store = SQLiteMetadataStore(db_path=app_settings.metadata_db_path)
    embedding_provider = OpenAIEmbeddingProvider(settings=app_settings)

    service = IngestionService(
        extraction_provider=AnthropicExtractionProvider(
            settings=app_settings, retry_config=presets["extraction"]
        ),
        embedding_provider=embedding_provider if embedding_provider.is_available() else None,
        metadata_store=store,
        chunker=TextChunker(**config.get("chunking", {})),
        splitter=PdfSplitter(max_size_bytes=app_settings.max_pdf_size_mb * 1024 * 1024),
        circuit_breakers=CircuitBreakerRegistry(
            default_config=CircuitBreakerConfig(**config.get("circuit_breaker", {}))
        ),
        pages_per_batch=app_settings.pages_per_batch,
        store_retry=presets["metadata_store"],
        embedding_retry=presets["embeddings"],
    )
    return service, store


def _base_request(args: argparse.Namespace) -> dict:
    """Request fields shared by the file and batch commands."""
    path = Path(args.path)
    fields: dict = {
        "source_type": args.type,
        "source_ref": args.ref,
        "title": args.title,
        "country_code": args.country,
        "generate_embeddings": not args.no_embeddings,
    }
    if path.suffix.lower() == ".txt":
        fields["raw_text"] = path.read_text(encoding="utf-8")
    else:
        fields["pdf_base64"] = base64.b64encode(path.read_bytes()).decode("ascii")
    return fields


def _print_result(result: IngestionResult) -> None:
    print(f"  Source ID:        {result.source_id}")
    print(f"  Pages processed:  {result.pages_processed}")
    print(f"  Chunks created:   {result.chunks_created}")
    print(f"  Codes detected:   {result.detected_codes_count}")
    print(f"  Evidence rows:    {result.evidence_created}")
    print(f"  Time:             {result.duration_ms / 1000:.2f}s")


# ---------------------------------------------------------------------------
# Subcommand handlers
# ---------------------------------------------------------------------------


async def _handle_file(args: argparse.Namespace, service) -> int:  # noqa: ANN001
    """Ingest a whole document in one invocation."""
    print(f"Ingesting {args.type} {args.ref}")
    print(f"  File: {args.path}")

    result = await service.ingest(IngestionRequest(**_base_request(args)))

    print("\nIngestion complete:")
    _print_result(result)
    if result.total_pages is not None:
        print(f"  Total pages:      {result.total_pages}")
    return 0


async def _handle_batch(args: argparse.Namespace, service) -> int:  # noqa: ANN001
    """Drive a large document through successive page-range invocations."""
    base = _base_request(args)
    batch_size = args.batch_size
    start_page = args.start_page
    source_id: int | None = args.source_id
    batches = 0
    chunks = 0

    print(f"Batch ingesting {args.type} {args.ref} ({batch_size} pages per batch)")
    print(f"  File: {args.path}")

    while True:
        end_page = start_page + batch_size - 1
        request = IngestionRequest(
            **base,
            batch_mode=True,
            start_page=start_page,
            end_page=end_page,
            source_id=source_id,
        )
        result = await service.ingest(request)

        if result.already_complete:
            print(f"\nPages {start_page}-{end_page}: document already complete")
            break

        batches += 1
        chunks += result.chunks_created
        source_id = result.source_id
        total = result.total_pages or end_page
        print(
            f"  Batch {batches}: pages {result.batch_start}-{result.batch_end} of {total} "
            f"-> {result.chunks_created} chunks, {result.evidence_created} evidence "
            f"(source {source_id})"
        )

        if result.batch_end is None or result.batch_end >= total:
            break
        start_page = result.batch_end + 1

    print("\nBatch ingestion complete:")
    print(f"  Source ID:        {source_id}")
    print(f"  Batches:          {batches}")
    print(f"  Chunks created:   {chunks}")
    return 0


async def _run(args: argparse.Namespace, service, store) -> int:  # noqa: ANN001
    await store.initialize()
    try:
        if args.command == "file":
            return await _handle_file(args, service)
        return await _handle_batch(args, service)
    except RegDocError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def _add_document_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("path", help="Path to the PDF (or .txt) document")
    parser.add_argument(
        "--type", required=True, choices=_SOURCE_TYPES, help="Source type"
    )
    parser.add_argument("--ref", required=True, help='Document reference, e.g. "4601/311"')
    parser.add_argument("--title", default=None, help="Title (extracted from the document when omitted)")
    parser.add_argument("--country", default="MA", help="Country code (default: MA)")
    parser.add_argument(
        "--no-embeddings",
        action="store_true",
        dest="no_embeddings",
        help="Store chunks without embeddings",
    )


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the ingestion CLI."""
    parser = argparse.ArgumentParser(
        prog="python -m src.cli.ingest",
        description="Ingest regulatory documents into the knowledge base.",
    )
    subparsers = parser.add_subparsers(dest="command", help="Ingestion commands")

    # -- file --
    file_parser = subparsers.add_parser("file", help="Ingest a document in one invocation")
    _add_document_args(file_parser)

    # -- batch --
    batch_parser = subparsers.add_parser(
        "batch", help="Ingest a large document page range by page range"
    )
    _add_document_args(batch_parser)
    batch_parser.add_argument(
        "--batch-size", type=int, default=5, dest="batch_size", help="Pages per invocation (default: 5)"
    )
    batch_parser.add_argument(
        "--start-page", type=int, default=1, dest="start_page", help="First page to process (default: 1)"
    )
    batch_parser.add_argument(
        "--source-id",
        type=int,
        default=None,
        dest="source_id",
        help="Resume appending to an existing source",
    )

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the ingestion tool.

    Parses the subcommand, builds the ingestion service from environment
    variables / ``.env`` and ``config/config.yaml``, and exits with the
    handler's status code.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if not Path(args.path).is_file():
        print(f"Error: file not found: {args.path}", file=sys.stderr)
        sys.exit(1)
    if args.command == "batch" and args.batch_size < 1:
        print("Error: --batch-size must be >= 1", file=sys.stderr)
        sys.exit(1)

    app_settings = Settings()
    service, store = _build_ingestion_service(app_settings)
    sys.exit(asyncio.run(_run(args, service, store)))


if __name__ == "__main__":
    main()
