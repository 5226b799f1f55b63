"""Anthropic document-extraction provider adapter.

Wraps the ``anthropic`` async client to implement
:class:`IExtractionProvider`.  A PDF (whole document or a split page
range) is sent as a base64 ``document`` content block and Claude returns
every page as strict JSON: text, Markdown tables and image / form
descriptions.

Retries are not left to the SDK (``max_retries=0``).  Each call goes
through :func:`~src.resilience.retry.with_retry` with the ``extraction``
preset so 429 / 5xx / 529 ("overloaded") responses follow the same
backoff policy as every other outbound call.  The response is parsed with
the resilient JSON parser because long documents regularly hit
``max_tokens`` mid-object.
"""

from __future__ import annotations

import asyncio
import base64
from typing import Any

import anthropic
import structlog

from src.config.settings import Settings
from src.interfaces.extraction_provider import IExtractionProvider
from src.models.legal import ExtractedImage, ExtractedPage, ExtractedTable
from src.models.resilience import RetryConfig
from src.resilience.json_parser import parse_json_with_schema
from src.resilience.retry import Sleeper, cap_timeout, get_retry_preset, with_retry
from src.utils.errors import ExtractionError, ProviderUnavailableError

logger = structlog.get_logger(logger_name=__name__)

_MAX_TOKENS = 8000
_PDF_BETA_HEADER = {"anthropic-beta": "pdfs-2024-09-25"}
_SMALL_DOCUMENT_BYTES = 200 * 1024
_SMALL_DOCUMENT_TIMEOUT_MS = 55_000

_SYSTEM_PROMPT = """\
Tu es un extracteur de documents réglementaires multilingue (français, arabe, anglais).
أنت مستخرج وثائق تنظيمية متعدد اللغات.

MISSION: Extraire EXHAUSTIVEMENT le contenu de chaque page:
1. **TEXTE**: Tout le texte, articles, paragraphes (préserver structure)
2. **TABLEAUX**: Convertir en Markdown avec | colonnes | - OBLIGATOIRE si présents
3. **IMAGES**: Décrire le contenu (formulaires, diagrammes, tampons, logos)

المهمة: استخراج شامل لمحتوى كل صفحة:
1. النص: كل النص والمواد والفقرات
2. الجداول: تحويل إلى Markdown
3. الصور: وصف المحتوى

FORMAT JSON STRICT:
{
  "pages": [
    {
      "page_number": 1,
      "text": "Contenu textuel de la page...",
      "tables": [
        {
          "table_index": 0,
          "markdown": "| Col1 | Col2 |\\n|---|---|\\n| val1 | val2 |",
          "description": "Tableau des taux de droits",
          "has_rates": true,
          "has_hs_codes": false
        }
      ],
      "images": [
        {
          "image_index": 0,
          "description": "Formulaire d'engagement sur l'honneur",
          "image_type": "form",
          "extracted_text": "Nom: ___ Prénom: ___"
        }
      ],
      "has_form": true
    }
  ]
}

RÈGLES CRITIQUES:
- Tableaux: TOUJOURS convertir en Markdown avec entêtes
- Images de formulaires: Extraire tous les champs visibles
- Ne jamais résumer, extraire TOUT
- Codes SH (6-10 chiffres): les repérer dans tableaux et texte, sans jamais les compléter"""

_USER_PROMPT = """\
Analyse ce document PDF et extrais pour chaque page:
1. Tout le texte (articles, paragraphes)
2. Tous les tableaux en format Markdown
3. Description de toutes les images/formulaires

Réponds en JSON strict uniquement."""


class AnthropicExtractionProvider(IExtractionProvider):
    """Extraction provider backed by Claude's PDF document input.

    Parameters
    ----------
    settings:
        Supplies the API key, base URL and model name.
    retry_config:
        Retry policy for each call; defaults to the ``extraction`` preset.
    small_document_bytes / small_document_timeout_ms:
        Payloads below the size threshold get the shorter per-attempt
        timeout so a stuck page fails well inside the caller's deadline.
    invocation_timeout_ms:
        Wall-clock ceiling of the hosting invocation; every per-attempt
        timeout is capped strictly below it.  ``None`` means no ceiling.
    client:
        Pre-built ``AsyncAnthropic`` client (tests inject a fake).
    sleep:
        Backoff sleep, injectable for tests.
    """

    def __init__(
        self,
        settings: Settings,
        retry_config: RetryConfig | None = None,
        small_document_bytes: int = _SMALL_DOCUMENT_BYTES,
        small_document_timeout_ms: int = _SMALL_DOCUMENT_TIMEOUT_MS,
        invocation_timeout_ms: int | None = None,
        client: Any | None = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._api_key = settings.anthropic_api_key
        self._model = settings.anthropic_model
        self._retry_config = cap_timeout(
            retry_config or get_retry_preset("extraction"), invocation_timeout_ms
        )
        self._small_document_bytes = small_document_bytes
        self._small_document_timeout_ms = small_document_timeout_ms
        self._sleep = sleep
        if client is not None:
            self._client = client
        else:
            client_kwargs: dict[str, Any] = {"api_key": self._api_key, "max_retries": 0}
            if settings.anthropic_base_url:
                client_kwargs["base_url"] = settings.anthropic_base_url
            self._client = anthropic.AsyncAnthropic(**client_kwargs)

    # ------------------------------------------------------------------
    # IExtractionProvider implementation
    # ------------------------------------------------------------------

    async def extract(self, document: bytes, start_page: int = 1) -> list[ExtractedPage]:
        if not self.is_available():
            raise ProviderUnavailableError(
                message="ANTHROPIC_API_KEY not configured",
                provider_name=self.get_provider_name(),
            )

        config = self._config_for(len(document))
        payload = base64.b64encode(document).decode("ascii")

        logger.info(
            "extraction_request",
            start_page=start_page,
            size_kb=round(len(document) / 1024, 1),
            timeout_ms=config.timeout_ms,
        )

        result = await with_retry(
            lambda: self._create_message(payload, config.timeout_ms / 1000),
            config,
            target="anthropic_extraction",
            sleep=self._sleep,
        )
        if not result.success:
            status = getattr(result.last_error, "status_code", None)
            raise ExtractionError(
                message=f"Claude API error: {result.error}",
                provider_name=self.get_provider_name(),
                status_code=status if isinstance(status, int) else None,
            ) from result.last_error

        response = result.data
        content = "\n".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        pages = self._parse_pages(content, start_page)

        usage = getattr(response, "usage", None)
        logger.info(
            "extraction_batch",
            start_page=start_page,
            pages=len(pages),
            tables=sum(len(p.tables) for p in pages),
            images=sum(len(p.images) for p in pages),
            attempts=result.attempts,
            input_tokens=getattr(usage, "input_tokens", None),
            output_tokens=getattr(usage, "output_tokens", None),
        )
        return pages

    def get_provider_name(self) -> str:
        return "anthropic"

    def is_available(self) -> bool:
        return bool(self._api_key)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _config_for(self, size_bytes: int) -> RetryConfig:
        if size_bytes < self._small_document_bytes:
            return self._retry_config.merged(
                timeout_ms=min(self._retry_config.timeout_ms, self._small_document_timeout_ms)
            )
        return self._retry_config

    async def _create_message(self, payload: str, timeout_s: float) -> Any:
        return await self._client.messages.create(
            model=self._model,
            max_tokens=_MAX_TOKENS,
            system=_SYSTEM_PROMPT,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "document",
                            "source": {
                                "type": "base64",
                                "media_type": "application/pdf",
                                "data": payload,
                            },
                        },
                        {"type": "text", "text": _USER_PROMPT},
                    ],
                }
            ],
            extra_headers=_PDF_BETA_HEADER,
            timeout=timeout_s,
        )

    def _parse_pages(self, content: str, start_page: int) -> list[ExtractedPage]:
        """Turn Claude's JSON answer into pages numbered from *start_page*.

        Falls back to a single page holding the raw answer when no page
        list can be recovered.
        """
        parsed = parse_json_with_schema(content, ["pages"], {"pages": []})
        raw_pages = parsed.data.get("pages") if parsed.success else None
        if parsed.partial:
            logger.warning(
                "extraction_json_recovered",
                start_page=start_page,
                recovered=parsed.recovered_fields,
                error=parsed.error,
            )

        if not isinstance(raw_pages, list) or not raw_pages:
            logger.warning("extraction_json_unusable", start_page=start_page, chars=len(content))
            return [ExtractedPage(page_number=start_page, text=content)]

        return [
            _to_page(raw, start_page + idx)
            for idx, raw in enumerate(raw_pages)
        ]


def _to_page(raw: Any, page_number: int) -> ExtractedPage:
    if not isinstance(raw, dict):
        return ExtractedPage(page_number=page_number, text=str(raw))

    tables = [
        ExtractedTable(
            table_index=_index(t.get("table_index"), idx),
            markdown=str(t.get("markdown") or ""),
            description=str(t.get("description") or ""),
            has_rates=bool(t.get("has_rates")),
            has_hs_codes=bool(t.get("has_hs_codes")),
        )
        for idx, t in enumerate(_as_list(raw.get("tables")))
        if isinstance(t, dict)
    ]
    images = [
        ExtractedImage(
            image_index=_index(img.get("image_index"), idx),
            description=str(img.get("description") or ""),
            image_type=str(img.get("image_type") or "other"),
            extracted_text=_as_text(img.get("extracted_text")),
        )
        for idx, img in enumerate(_as_list(raw.get("images")))
        if isinstance(img, dict)
    ]
    return ExtractedPage(
        page_number=page_number,
        text=str(raw.get("text") or ""),
        tables=tables,
        images=images,
        has_form=bool(raw.get("has_form")),
    )


def _index(value: Any, default: int) -> int:
    return value if isinstance(value, int) and value >= 0 else default


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _as_text(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None
