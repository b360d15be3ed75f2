"""
PDF rasterization service backed by external command-line tools.

Detects which PDF-to-image converter is installed (Poppler's pdftoppm or
ImageMagick) and renders every page of a PDF into numbered PNG files.
"""

import asyncio
import logging
import re
import shutil
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import NamedTuple

logger = logging.getLogger(__name__)

# pdftoppm pads the page number to the width of the page count, ImageMagick
# uses the %02d pattern below. Both end in "-<digits>.png".
PAGE_FILENAME_PATTERN = re.compile(r"-(\d+)\.png$", re.IGNORECASE)

INSTALL_HINT = (
    "Install Poppler (pdftoppm) or ImageMagick, e.g. brew install poppler "
    "(macOS) or apt-get install poppler-utils (Linux)"
)


class RasterizedPage(NamedTuple):
    """A rendered page image and the page number taken from its filename."""

    number: int
    path: Path


class PDFConversionError(Exception):
    """Raised when PDF conversion fails."""

    pass


class NoConverterAvailable(PDFConversionError):
    """Raised when no PDF-to-image tool is installed on the host."""

    def __init__(self):
        super().__init__(f"No PDF-to-image converter found. {INSTALL_HINT}.")


class RasterizationFailed(PDFConversionError):
    """Raised when the converter process fails to spawn or exits non-zero."""

    def __init__(self, tool: str, exit_code: int | None, detail: str = ""):
        self.tool = tool
        self.exit_code = exit_code
        message = f"{tool} exited with code {exit_code}"
        if exit_code is None:
            message = f"{tool} failed"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ConversionProducedNoPages(PDFConversionError):
    """Raised when conversion succeeded but no page images were produced."""

    def __init__(self):
        super().__init__("Failed to convert PDF into images.")


class ConverterKind(str, Enum):
    """Available PDF-to-image tools, in order of preference."""

    PDFTOPPM = "pdftoppm"
    IMAGEMAGICK = "imagemagick"
    IMAGEMAGICK_LEGACY = "imagemagick_legacy"
    NONE = "none"


class PageConverter(ABC):
    """Builds the command line for one external rasterization tool."""

    kind: ConverterKind
    executable: str

    @abstractmethod
    def build_command(self, pdf_path: Path, output_dir: Path, base: str, dpi: int) -> list[str]:
        """Return the argv that renders every page of pdf_path into output_dir."""


class PdftoppmConverter(PageConverter):
    """Poppler's pdftoppm. Best text and color fidelity."""

    kind = ConverterKind.PDFTOPPM
    executable = "pdftoppm"

    def build_command(self, pdf_path: Path, output_dir: Path, base: str, dpi: int) -> list[str]:
        return [
            self.executable,
            "-png",
            "-rx", str(dpi),
            "-ry", str(dpi),
            str(pdf_path),
            str(output_dir / base),
        ]


class ImageMagickConverter(PageConverter):
    """ImageMagick 7 (`magick`) or the legacy ImageMagick 6 `convert` binary."""

    def __init__(self, kind: ConverterKind, executable: str):
        self.kind = kind
        self.executable = executable

    def build_command(self, pdf_path: Path, output_dir: Path, base: str, dpi: int) -> list[str]:
        # Flatten transparency onto white
        return [
            self.executable,
            "-density", str(dpi),
            str(pdf_path),
            "-alpha", "remove",
            "-background", "white",
            str(output_dir / f"{base}-%02d.png"),
        ]


# Detection order matters: pdftoppm first, then ImageMagick 7, then ImageMagick 6.
CONVERTERS: dict[ConverterKind, PageConverter] = {
    ConverterKind.PDFTOPPM: PdftoppmConverter(),
    ConverterKind.IMAGEMAGICK: ImageMagickConverter(ConverterKind.IMAGEMAGICK, "magick"),
    ConverterKind.IMAGEMAGICK_LEGACY: ImageMagickConverter(
        ConverterKind.IMAGEMAGICK_LEGACY, "convert"
    ),
}


def detect_converter() -> ConverterKind:
    """
    Find the first installed PDF-to-image tool.

    Only resolves executables on PATH; nothing is spawned.

    Returns:
        The detected ConverterKind, or ConverterKind.NONE.
    """
    for kind, converter in CONVERTERS.items():
        if shutil.which(converter.executable):
            return kind
    return ConverterKind.NONE


def extract_page_number(filename: str) -> int | None:
    """Return the page number encoded in a rendered page filename."""
    match = PAGE_FILENAME_PATTERN.search(filename)
    return int(match.group(1)) if match else None


def list_pages_sorted(output_dir: Path, base: str) -> list[RasterizedPage]:
    """
    List rendered page images in output_dir ordered by page number.

    Files that don't follow the `<base>-<digits>.png` convention are skipped.
    """
    numbered: list[RasterizedPage] = []
    for path in output_dir.iterdir():
        name = path.name
        if not name.startswith(base) or not name.lower().endswith(".png"):
            continue
        page = extract_page_number(name)
        if page is not None:
            numbered.append(RasterizedPage(page, path))
    numbered.sort(key=lambda item: item.number)
    return numbered


class PDFService:
    """
    Service for PDF processing operations.

    Shells out to pdftoppm or ImageMagick to render PDF pages to PNG files.
    """

    def __init__(self, dpi: int = 72, timeout: float | None = None):
        """
        Initialize the PDF service.

        Args:
            dpi: Resolution for PDF to image conversion. Higher = better quality but slower.
            timeout: Seconds to wait for the converter process. None or 0 waits forever.
        """
        self.dpi = dpi
        self.timeout = timeout or None

    async def rasterize(self, pdf_path: Path, output_dir: Path) -> list[RasterizedPage]:
        """
        Render every page of a PDF into output_dir.

        Args:
            pdf_path: PDF file to render.
            output_dir: Directory for the page images. Created if missing.

        Returns:
            Rendered pages with the number encoded in each filename, ascending.
            ImageMagick numbers from 0, pdftoppm from 1.

        Raises:
            NoConverterAvailable: If neither pdftoppm nor ImageMagick is installed.
            RasterizationFailed: If the converter can't be run or exits non-zero.
        """
        pdf_path = Path(pdf_path)
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        kind = detect_converter()
        if kind == ConverterKind.NONE:
            raise NoConverterAvailable()

        converter = CONVERTERS[kind]
        base = pdf_path.stem
        command = converter.build_command(pdf_path, output_dir, base, self.dpi)

        logger.info("Converting PDF to images with %s (dpi=%d)", kind.value, self.dpi)
        logger.debug("Running: %s", " ".join(command))
        await self._run(converter.executable, command)

        pages = list_pages_sorted(output_dir, base)
        if not pages:
            logger.warning(
                "%s finished but no '%s-<n>.png' files were found in %s",
                converter.executable,
                base,
                output_dir,
            )
        else:
            logger.info("Successfully converted %d page(s)", len(pages))
        return pages

    async def _run(self, tool: str, command: list[str]) -> None:
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error("Could not start %s: %s", tool, e)
            raise RasterizationFailed(tool, None, str(e)) from e

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            try:
                process.kill()
            except ProcessLookupError:
                pass  # exited on its own
            await process.wait()
            logger.error("%s timed out after %.0fs", tool, self.timeout)
            raise RasterizationFailed(tool, None, f"timed out after {self.timeout:.0f}s") from e

        if process.returncode != 0:
            tail = (stderr or b"").decode("utf-8", errors="replace").strip()[-800:]
            logger.error("%s exited with code %d: %s", tool, process.returncode, tail)
            raise RasterizationFailed(tool, process.returncode, tail)


# Singleton instance for convenience
_pdf_service: PDFService | None = None


def get_pdf_service() -> PDFService:
    """Get or create the PDF service singleton."""
    global _pdf_service
    if _pdf_service is None:
        from ..config import get_settings

        settings = get_settings()
        _pdf_service = PDFService(dpi=settings.pdf_dpi, timeout=settings.rasterizer_timeout)
    return _pdf_service
