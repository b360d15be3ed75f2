"""
Two-phase PDF analysis pipeline.

Rasterizes the uploaded PDF, asks the model about every page in order,
then asks it once more to merge the per-page answers into a final result.
The upload and the per-request page directory are always removed afterwards.
"""

import json
import logging
import shutil
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from ..config import Settings, get_settings
from ..models import AnalysisForm, AnalysisRequest, AnalysisResult, PageResult
from .ai import (
    DEFAULT_FINAL_PROMPT,
    AggregationUnparsable,
    AIService,
    get_ai_service,
    parse_json_from_raw,
)
from .pdf_service import (
    ConversionProducedNoPages,
    PDFService,
    RasterizedPage,
    get_pdf_service,
)

logger = logging.getLogger(__name__)


class AnalysisValidationError(Exception):
    """Raised when an analyze request is missing fields or carries malformed ones."""

    pass


# =============================================================================
# Validation
# =============================================================================


def _blank(value: str | None) -> bool:
    return value is None or not str(value).strip()


def _load_schema(text: str, label: str) -> Any:
    try:
        return json.loads(text)
    except ValueError as e:
        raise AnalysisValidationError(f"{label} is not valid JSON.") from e


def parse_max_pages(value: str | int | None) -> int:
    """Parse the maxPages field. Missing, non-numeric or non-positive values mean no limit."""
    if value is None or value == "":
        return 0
    try:
        parsed = int(str(value).strip())
    except ValueError:
        logger.warning("Ignoring non-numeric maxPages value: %r", value)
        return 0
    return parsed if parsed > 0 else 0


def validate_request(upload_path: Path | None, form: AnalysisForm) -> AnalysisRequest:
    """
    Turn raw form fields into an AnalysisRequest.

    Raises:
        AnalysisValidationError: With a distinct message per problem.
    """
    if upload_path is None:
        raise AnalysisValidationError("PDF file is required (form-data field: file).")

    page_prompt = form.page_prompt if not _blank(form.page_prompt) else form.prompt
    if _blank(page_prompt):
        raise AnalysisValidationError(
            'Parameter "pagePrompt" is required (or use "prompt" for compatibility).'
        )

    page_schema = None
    if not _blank(form.page_schema):
        page_schema = _load_schema(form.page_schema, "pageSchema")
    elif not _blank(form.schema_):
        page_schema = _load_schema(form.schema_, "schema (legacy)")

    final_schema = None
    if not _blank(form.final_schema):
        final_schema = _load_schema(form.final_schema, "finalSchema")

    final_prompt = form.final_prompt if not _blank(form.final_prompt) else DEFAULT_FINAL_PROMPT

    return AnalysisRequest(
        pdf_path=upload_path,
        page_prompt=page_prompt,
        final_prompt=final_prompt,
        page_schema=page_schema,
        final_schema=final_schema,
        max_pages=parse_max_pages(form.max_pages),
    )


def effective_page_limit(request_limit: int, global_limit: int) -> int:
    """The request limit wins when positive, then the global one. 0 means all pages."""
    if request_limit > 0:
        return request_limit
    if global_limit > 0:
        return global_limit
    return 0


# =============================================================================
# Workspace
# =============================================================================


@contextmanager
def request_workspace(upload_path: Path | None, pages_root: Path) -> Iterator[Path]:
    """
    Reserve a page directory for one request and clean up on exit.

    The directory is not created here; the rasterizer creates it on demand.
    On exit the upload and the directory are removed and any error doing so
    is swallowed.
    """
    stem = upload_path.stem if upload_path is not None else "upload"
    workspace = Path(pages_root) / f"{stem}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"
    try:
        yield workspace
    finally:
        if upload_path is not None:
            try:
                Path(upload_path).unlink(missing_ok=True)
            except OSError as e:
                logger.debug("Could not remove upload %s: %s", upload_path, e)
        shutil.rmtree(workspace, ignore_errors=True)


# =============================================================================
# Pipeline
# =============================================================================


class AnalysisPipeline:
    """
    Sequences rasterization, per-page inference and aggregation for one upload.

    Pages are processed one at a time in page order so that the aggregation
    input lines up with the document.
    """

    def __init__(
        self,
        pdf_service: PDFService,
        ai_service: AIService,
        settings: Settings,
    ):
        self.pdf_service = pdf_service
        self.ai_service = ai_service
        self.settings = settings

    async def analyze(self, upload_path: Path | None, form: AnalysisForm) -> AnalysisResult:
        """
        Run the whole pipeline for an uploaded PDF.

        Args:
            upload_path: The uploaded PDF on disk, or None if no file was sent.
            form: Raw form fields of the request.

        Returns:
            AnalysisResult with the final answer.

        Raises:
            AnalysisValidationError: If the request is invalid.
            PDFConversionError: If the PDF can't be rendered.
            CompletionFailed: If the completion endpoint fails.
            AggregationUnparsable: If a final schema was given and the answer isn't JSON.
        """
        start = time.monotonic()
        with request_workspace(upload_path, self.settings.pages_dir) as workspace:
            request = validate_request(upload_path, form)

            pages = await self.pdf_service.rasterize(request.pdf_path, workspace)
            limit = effective_page_limit(request.max_pages, self.settings.max_pages)
            if limit > 0:
                pages = pages[:limit]
            if not pages:
                raise ConversionProducedNoPages()

            logger.debug("Processing %d page(s) with pagePrompt", len(pages))
            page_results = await self._analyze_pages(request, pages)

            logger.debug("Aggregating page results with finalPrompt")
            payload = [page_result.to_payload() for page_result in page_results]
            raw = await self.ai_service.aggregate(
                request.final_prompt, payload, request.final_schema
            )
            elapsed_ms = int((time.monotonic() - start) * 1000)

            if request.final_schema is None:
                logger.info("Analyzed %d page(s) in %d ms", len(pages), elapsed_ms)
                return AnalysisResult(
                    model=self.ai_service.model,
                    pages_processed=len(pages),
                    content=raw,
                    ms=elapsed_ms,
                    page_results=page_results,
                )

            outcome = parse_json_from_raw(raw)
            if not outcome.ok:
                logger.warning("Final aggregation returned non-JSON output: %s", raw[:200])
                raise AggregationUnparsable(raw)

            logger.info("Analyzed %d page(s) in %d ms", len(pages), elapsed_ms)
            return AnalysisResult(
                model=self.ai_service.model,
                pages_processed=len(pages),
                structured=True,
                result=outcome.value,
                ms=elapsed_ms,
                note=outcome.note,
                page_results=page_results,
            )

    async def _analyze_pages(
        self, request: AnalysisRequest, pages: list[RasterizedPage]
    ) -> list[PageResult]:
        results: list[PageResult] = []
        for position, (number, page_path) in enumerate(pages, start=1):
            logger.debug(
                "Analyzing page %d (%d/%d, %s)", number, position, len(pages), page_path.name
            )
            raw = await self.ai_service.analyze_page(
                request.page_prompt, page_path, request.page_schema
            )

            if request.page_schema is None:
                results.append(PageResult.text(number, raw))
                continue

            outcome = parse_json_from_raw(raw)
            if outcome.ok:
                results.append(PageResult.parsed(number, outcome.value, outcome.note))
            else:
                logger.warning("Page %d answer is not valid JSON, keeping raw text", number)
                results.append(PageResult.unparsed(number, raw))
        return results


# Singleton instance for convenience
_pipeline: AnalysisPipeline | None = None


def get_pipeline() -> AnalysisPipeline:
    """Get or create the analysis pipeline singleton."""
    global _pipeline
    if _pipeline is None:
        _pipeline = AnalysisPipeline(get_pdf_service(), get_ai_service(), get_settings())
    return _pipeline
