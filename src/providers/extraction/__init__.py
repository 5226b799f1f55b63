"""Document-text extraction provider implementations.

Extraction turns PDF bytes into per-page text, Markdown tables and image
descriptions.  One implementation of IExtractionProvider:
    AnthropicExtractionProvider -- Claude with base64 PDF document input.
"""

from src.providers.extraction.anthropic_extraction_provider import AnthropicExtractionProvider

__all__ = ["AnthropicExtractionProvider"]
