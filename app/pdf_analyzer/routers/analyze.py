"""
Router for PDF analysis.

Handles:
- PDF upload and per-page analysis with an optional final aggregation schema
"""

import logging
import time
import uuid
from pathlib import Path
from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile

from ..config import Settings, get_settings
from ..models import AnalysisForm
from ..services.pipeline import AnalysisPipeline, AnalysisValidationError, get_pipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["analyze"])


def _is_pdf(file: UploadFile) -> bool:
    filename = (file.filename or "").lower()
    return file.content_type == "application/pdf" or filename.endswith(".pdf")


async def save_upload(file: UploadFile, uploads_dir: Path) -> Path:
    """Write an uploaded file to uploads_dir under a unique name."""
    uploads_dir.mkdir(parents=True, exist_ok=True)
    suffix = Path(file.filename or "").suffix.lower() or ".pdf"
    target = uploads_dir / f"upload-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}{suffix}"
    target.write_bytes(await file.read())
    logger.info("Saved upload %s (%s) to %s", file.filename, file.content_type, target.name)
    return target


@router.post("/analyze")
async def analyze_pdf(
    pipeline: Annotated[AnalysisPipeline, Depends(get_pipeline)],
    settings: Annotated[Settings, Depends(get_settings)],
    file: Annotated[UploadFile | None, File(description="PDF file to analyze")] = None,
    pagePrompt: Annotated[str | None, Form()] = None,
    prompt: Annotated[str | None, Form(description="Legacy alias of pagePrompt")] = None,
    finalPrompt: Annotated[str | None, Form()] = None,
    pageSchema: Annotated[str | None, Form()] = None,
    schema_: Annotated[
        str | None, Form(alias="schema", description="Legacy alias of pageSchema")
    ] = None,
    finalSchema: Annotated[str | None, Form()] = None,
    maxPages: Annotated[str | None, Form()] = None,
    max_pages_query: Annotated[str | None, Query(alias="maxPages")] = None,
) -> dict:
    """
    Analyze every page of an uploaded PDF and merge the answers.

    Each page is rendered to an image and sent to the model with `pagePrompt`.
    The ordered page answers are then merged with `finalPrompt`. With
    `finalSchema` the merged answer is returned as parsed JSON in `result`,
    otherwise as text in `content`.
    """
    if file is not None and not _is_pdf(file):
        await file.close()
        raise AnalysisValidationError("Only PDF files are accepted.")

    upload_path = None
    if file is not None:
        try:
            upload_path = await save_upload(file, Path(settings.uploads_dir))
        finally:
            await file.close()

    form = AnalysisForm(
        page_prompt=pagePrompt,
        prompt=prompt,
        final_prompt=finalPrompt,
        page_schema=pageSchema,
        schema=schema_,
        final_schema=finalSchema,
        max_pages=maxPages or max_pages_query,
    )
    result = await pipeline.analyze(upload_path, form)
    return result.to_response()
