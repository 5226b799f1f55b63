"""Allow ``python -m src.cli`` execution (delegates to the ingestion CLI)."""

from src.cli.ingest import main

main()
