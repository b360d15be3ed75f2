"""
FastAPI application for the PDF analysis service.

Provides endpoints for:
- Analyzing uploaded PDFs page by page with a multimodal model
- Proxying chat completions to the underlying OpenAI-compatible endpoint
- Health checks
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, status
from fastapi.responses import JSONResponse

from .config import get_settings
from .models import ErrorResponse, HealthResponse
from .routers import analyze, proxy
from .services.ai import AggregationUnparsable, AIServiceError, get_ai_service
from .services.pdf_service import PDFConversionError, get_pdf_service
from .services.pipeline import AnalysisValidationError

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    logger.info("Starting PDF Analysis Service...")
    get_pdf_service()
    ai_service = get_ai_service()
    logger.info("Model (OpenAI-compatible): %s", ai_service.model)
    logger.info("OPENAI_BASE_URL: %s", ai_service.base_url)
    yield
    logger.info("Shutting down PDF Analysis Service...")


# Create FastAPI application
app = FastAPI(
    title="PDF Analysis API",
    description="Per-page multimodal PDF analysis with final aggregation",
    version="1.0.0",
    lifespan=lifespan,
)


# =============================================================================
# Health Endpoints
# =============================================================================


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint reporting the configured model."""
    return HealthResponse(status="ok", model=get_settings().model)


# =============================================================================
# Include Routers
# =============================================================================

app.include_router(analyze.router)
app.include_router(proxy.router)


# =============================================================================
# Exception Handlers
# =============================================================================


def _error(status_code: int, message: str, raw: str | None = None) -> JSONResponse:
    body = ErrorResponse(error=message, raw=raw)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


@app.exception_handler(AnalysisValidationError)
async def validation_error_handler(request, exc: AnalysisValidationError):
    """Handle invalid analyze requests."""
    return _error(status.HTTP_400_BAD_REQUEST, str(exc))


@app.exception_handler(PDFConversionError)
async def pdf_conversion_error_handler(request, exc: PDFConversionError):
    """Handle PDF conversion errors."""
    logger.error("PDF conversion failed: %s", exc)
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))


@app.exception_handler(AggregationUnparsable)
async def aggregation_unparsable_handler(request, exc: AggregationUnparsable):
    """Handle a final aggregation that didn't return JSON."""
    return _error(status.HTTP_502_BAD_GATEWAY, str(exc), raw=exc.raw)


@app.exception_handler(AIServiceError)
async def ai_service_error_handler(request, exc: AIServiceError):
    """Handle AI service errors."""
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))


@app.exception_handler(Exception)
async def unexpected_error_handler(request, exc: Exception):
    """Report anything else as a JSON error body."""
    logger.exception("Unexpected error handling %s", request.url.path)
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc) or exc.__class__.__name__)
