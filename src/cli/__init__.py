"""CLI tools for the regulatory ingestion service.

- ``python -m src.cli.ingest file`` -- ingest one document in a single run.
- ``python -m src.cli.ingest batch`` -- drive a large document through
  successive page-range invocations, appending to one source.

All CLI modules use argparse and build their own service dependencies,
because they run as one-shot scripts rather than a long-lived server.
"""
