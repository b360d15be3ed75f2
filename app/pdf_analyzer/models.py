"""
Pydantic models for the PDF analysis pipeline.

Defines the analysis request, the tagged per-page result variant,
and the response bodies returned by the API.
"""

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

UNPARSED_KEY = "_unparsed"


class AnalysisForm(BaseModel):
    """Raw form fields of an analyze request, before validation."""

    page_prompt: str | None = None
    prompt: str | None = None  # legacy alias of page_prompt
    final_prompt: str | None = None
    page_schema: str | None = None
    schema_: str | None = Field(default=None, alias="schema")  # legacy alias of page_schema
    final_schema: str | None = None
    max_pages: str | int | None = None

    model_config = {"populate_by_name": True}


class AnalysisRequest(BaseModel):
    """
    A validated analysis request.

    Attributes:
        pdf_path: The uploaded PDF on disk.
        page_prompt: Instruction sent with every page image. Never blank.
        final_prompt: Instruction for the aggregation step.
        page_schema: Optional JSON schema for per-page answers.
        final_schema: Optional JSON schema for the final answer.
        max_pages: Request-level page limit, 0 meaning no limit.
    """

    pdf_path: Path
    page_prompt: str = Field(..., min_length=1)
    final_prompt: str
    page_schema: Any = None
    final_schema: Any = None
    max_pages: int = Field(default=0, ge=0)


class PageResultKind(str, Enum):
    """Which arm of the per-page result variant is present."""

    TEXT = "text"  # no page schema, raw answer kept verbatim
    PARSED = "parsed"  # page schema given and the answer parsed as JSON
    UNPARSED = "unparsed"  # page schema given but the answer wasn't JSON


class PageResult(BaseModel):
    """Answer of the model for one rendered page."""

    page: int = Field(..., ge=0, description="Page number taken from the rendered filename")
    kind: PageResultKind
    value: Any = None
    note: str | None = None

    @classmethod
    def text(cls, page: int, raw: str) -> "PageResult":
        return cls(page=page, kind=PageResultKind.TEXT, value=raw)

    @classmethod
    def parsed(cls, page: int, value: Any, note: str | None = None) -> "PageResult":
        return cls(page=page, kind=PageResultKind.PARSED, value=value, note=note)

    @classmethod
    def unparsed(cls, page: int, raw: str) -> "PageResult":
        return cls(page=page, kind=PageResultKind.UNPARSED, value=raw)

    def to_payload(self) -> Any:
        """Serialize for the aggregation prompt."""
        if self.kind == PageResultKind.UNPARSED:
            return {UNPARSED_KEY: self.value}
        return self.value


class AnalysisResult(BaseModel):
    """Successful outcome of the analysis pipeline."""

    model: str
    pages_processed: int = Field(..., ge=1)
    structured: bool = Field(
        default=False,
        description="True when a final schema was given and `result` holds parsed JSON",
    )
    result: Any = None
    content: str | None = None
    ms: int = Field(..., ge=0, description="Elapsed time in milliseconds")
    note: str | None = None
    page_results: list[PageResult] = Field(default_factory=list, exclude=True)

    def to_response(self) -> dict[str, Any]:
        """Build the JSON body returned by the analyze endpoint."""
        body: dict[str, Any] = {"model": self.model, "pagesProcessed": self.pages_processed}
        if self.structured:
            body["result"] = self.result
        else:
            body["content"] = self.content
        body["ms"] = self.ms
        if self.note:
            body["note"] = self.note
        return body


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(default="ok")
    model: str = Field(..., description="Configured model name")


class ErrorResponse(BaseModel):
    """Error body returned for failed requests."""

    error: str
    raw: str | None = None
