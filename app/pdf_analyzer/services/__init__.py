"""
Services package for PDF analysis application.

Contains:
- pdf_service: PDF to image rasterization via pdftoppm or ImageMagick
- ai: OpenAI-compatible chat completions and answer parsing
- pipeline: per-page inference and final aggregation
"""

from .ai import AIService
from .pdf_service import PDFService
from .pipeline import AnalysisPipeline

__all__ = ["PDFService", "AIService", "AnalysisPipeline"]
