"""Pytest configuration and fixtures."""

from pathlib import Path
from types import SimpleNamespace
from typing import Any, Generator

import pytest
from fastapi.testclient import TestClient

from app.pdf_analyzer.config import Settings, get_settings
from app.pdf_analyzer.main import app
from app.pdf_analyzer.services.ai import AIService, get_ai_service
from app.pdf_analyzer.services.pdf_service import RasterizedPage
from app.pdf_analyzer.services.pipeline import AnalysisPipeline, get_pipeline

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-page"


class FakeMessage:
    def __init__(self, content: str | None):
        self.content = content


class FakeChoice:
    def __init__(self, content: str | None):
        self.message = FakeMessage(content)


class FakeResponse:
    def __init__(self, content: str | None):
        self.choices = [FakeChoice(content)]


class FakeCompletions:
    """Stands in for `client.chat.completions`, replaying queued answers."""

    def __init__(self, answers: list[Any] | None = None):
        self.answers = list(answers or [])
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        answer = self.answers.pop(0) if self.answers else ""
        if isinstance(answer, Exception):
            raise answer
        if isinstance(answer, str) or answer is None:
            return FakeResponse(answer)
        return answer


class FakeOpenAIClient:
    def __init__(self, answers: list[Any] | None = None):
        self.completions = FakeCompletions(answers)
        self.chat = SimpleNamespace(completions=self.completions)


class FakePDFService:
    """Writes `page_count` numbered PNG files instead of running a converter."""

    def __init__(
        self, page_count: int = 3, error: Exception | None = None, first_page: int = 1
    ):
        self.page_count = page_count
        self.first_page = first_page
        self.error = error
        self.calls: list[tuple[Path, Path]] = []

    async def rasterize(self, pdf_path: Path, output_dir: Path) -> list[RasterizedPage]:
        self.calls.append((Path(pdf_path), Path(output_dir)))
        output_dir.mkdir(parents=True, exist_ok=True)
        if self.error is not None:
            raise self.error
        pages = []
        for number in range(self.first_page, self.first_page + self.page_count):
            page = output_dir / f"{Path(pdf_path).stem}-{number}.png"
            page.write_bytes(PNG_BYTES)
            pages.append(RasterizedPage(number, page))
        return pages


class FakeAIService:
    """Records page and aggregation calls and replays queued answers."""

    def __init__(
        self,
        page_answers: list[str] | None = None,
        final_answer: str = "final answer",
        model: str = "test-model",
    ):
        self.page_answers = list(page_answers or [])
        self.final_answer = final_answer
        self.model = model
        self.page_calls: list[tuple[str, Path, Any]] = []
        self.aggregate_calls: list[tuple[str, list[Any], Any]] = []

    async def analyze_page(self, prompt: str, image_path: Path, schema: Any = None) -> str:
        self.page_calls.append((prompt, image_path, schema))
        if self.page_answers:
            return self.page_answers.pop(0)
        return f"answer for {image_path.name}"

    async def aggregate(self, final_prompt: str, page_payload: list[Any], schema: Any = None) -> str:
        self.aggregate_calls.append((final_prompt, page_payload, schema))
        return self.final_answer


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing the upload and page directories into tmp_path."""
    return Settings(
        model="test-model",
        openai_base_url="http://localhost:9999/v1",
        openai_api_key="test-key",
        uploads_dir=tmp_path / "uploads",
        pages_dir=tmp_path / "pages",
        max_pages=0,
        debug=False,
    )


@pytest.fixture
def upload_file(tmp_path: Path, sample_pdf_bytes: bytes) -> Path:
    """An uploaded PDF already written to disk."""
    uploads = tmp_path / "uploads"
    uploads.mkdir(parents=True, exist_ok=True)
    path = uploads / "upload-1700000000000.pdf"
    path.write_bytes(sample_pdf_bytes)
    return path


@pytest.fixture
def fake_pdf_service() -> FakePDFService:
    return FakePDFService(page_count=3)


@pytest.fixture
def fake_ai_service() -> FakeAIService:
    return FakeAIService()


@pytest.fixture
def fake_openai_client() -> FakeOpenAIClient:
    return FakeOpenAIClient()


@pytest.fixture
def client(
    settings: Settings,
    fake_pdf_service: FakePDFService,
    fake_openai_client: FakeOpenAIClient,
) -> Generator[TestClient, None, None]:
    """Create a test client wired to fake converter and completion backends."""
    ai_service = AIService(
        api_key="test-key",
        base_url=settings.openai_base_url,
        model=settings.model,
        timeout=0,
        max_image_side=0,
        client=fake_openai_client,
    )
    pipeline = AnalysisPipeline(fake_pdf_service, ai_service, settings)

    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_ai_service] = lambda: ai_service
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def sample_pdf_bytes() -> bytes:
    """
    Create a minimal valid PDF for testing.

    This is a minimal PDF structure that should be recognized as a valid PDF.
    """
    return b"""%PDF-1.4
1 0 obj
<< /Type /Catalog /Pages 2 0 R >>
endobj
2 0 obj
<< /Type /Pages /Kids [3 0 R] /Count 1 >>
endobj
3 0 obj
<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] >>
endobj
trailer
<< /Size 4 /Root 1 0 R >>
%%EOF"""
