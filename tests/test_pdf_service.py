"""Tests for PDF service."""

import asyncio
import stat
import sys
from pathlib import Path

import pytest

from app.pdf_analyzer.services import pdf_service
from app.pdf_analyzer.services.pdf_service import (
    CONVERTERS,
    ConverterKind,
    NoConverterAvailable,
    PDFService,
    RasterizationFailed,
    detect_converter,
    extract_page_number,
    list_pages_sorted,
)

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="uses a shell script as converter")


def _which_only(*available: str):
    def which(name: str):
        return f"/usr/bin/{name}" if name in available else None

    return which


def _fake_tool(bin_dir: Path, name: str, body: str) -> None:
    bin_dir.mkdir(parents=True, exist_ok=True)
    script = bin_dir / name
    script.write_text(f"#!/bin/sh\n{body}\n")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


class TestDetectConverter:
    """Tests for converter probing order."""

    def test_prefers_pdftoppm(self, monkeypatch):
        monkeypatch.setattr(pdf_service.shutil, "which", _which_only("pdftoppm", "magick", "convert"))
        assert detect_converter() == ConverterKind.PDFTOPPM

    def test_magick_before_legacy_convert(self, monkeypatch):
        monkeypatch.setattr(pdf_service.shutil, "which", _which_only("magick", "convert"))
        assert detect_converter() == ConverterKind.IMAGEMAGICK

    def test_legacy_convert(self, monkeypatch):
        monkeypatch.setattr(pdf_service.shutil, "which", _which_only("convert"))
        assert detect_converter() == ConverterKind.IMAGEMAGICK_LEGACY

    def test_none_available(self, monkeypatch):
        monkeypatch.setattr(pdf_service.shutil, "which", _which_only())
        assert detect_converter() == ConverterKind.NONE


class TestConverterCommands:
    """Tests for the command lines built per tool."""

    def test_pdftoppm_command(self):
        command = CONVERTERS[ConverterKind.PDFTOPPM].build_command(
            Path("in/doc.pdf"), Path("out"), "doc", 150
        )
        assert command == ["pdftoppm", "-png", "-rx", "150", "-ry", "150", "in/doc.pdf", str(Path("out") / "doc")]

    @pytest.mark.parametrize(
        "kind,executable",
        [(ConverterKind.IMAGEMAGICK, "magick"), (ConverterKind.IMAGEMAGICK_LEGACY, "convert")],
    )
    def test_imagemagick_flattens_on_white(self, kind, executable):
        command = CONVERTERS[kind].build_command(Path("doc.pdf"), Path("out"), "doc", 72)
        assert command[0] == executable
        assert command[1:3] == ["-density", "72"]
        assert command[4:8] == ["-alpha", "remove", "-background", "white"]
        assert command[-1] == str(Path("out") / "doc-%02d.png")


class TestListPages:
    """Tests for collecting rendered pages from the output directory."""

    def test_extract_page_number(self):
        assert extract_page_number("doc-07.png") == 7
        assert extract_page_number("doc-12.PNG") == 12
        assert extract_page_number("doc.png") is None
        assert extract_page_number("doc-1.jpg") is None

    def test_sorted_numerically(self, tmp_path):
        """Test that page 10 sorts after page 2."""
        for name in ("doc-10.png", "doc-2.png", "doc-1.png"):
            (tmp_path / name).write_bytes(b"x")
        pages = list_pages_sorted(tmp_path, "doc")
        assert [p.path.name for p in pages] == ["doc-1.png", "doc-2.png", "doc-10.png"]

    def test_non_matching_files_skipped(self, tmp_path):
        for name in ("doc-1.png", "doc.png", "other-2.png", "doc-3.ppm", "notes.txt"):
            (tmp_path / name).write_bytes(b"x")
        pages = list_pages_sorted(tmp_path, "doc")
        assert [p.path.name for p in pages] == ["doc-1.png"]

    def test_numbers_taken_from_filenames(self, tmp_path):
        """Test that ImageMagick's zero-based names keep their own numbers."""
        for name in ("doc-01.png", "doc-00.png", "doc-02.png"):
            (tmp_path / name).write_bytes(b"x")
        pages = list_pages_sorted(tmp_path, "doc")
        assert [p.number for p in pages] == [0, 1, 2]
        assert pages[0].path == tmp_path / "doc-00.png"


class TestPDFService:
    """Tests for PDFService rasterization."""

    def test_init_default_values(self):
        """Test PDFService initializes with default values."""
        service = PDFService()
        assert service.dpi == 72
        assert service.timeout is None

    def test_zero_timeout_means_no_timeout(self):
        assert PDFService(dpi=300, timeout=0).timeout is None

    @pytest.mark.asyncio
    async def test_no_converter_raises(self, tmp_path, monkeypatch):
        """Test that a missing converter fails before spawning anything."""
        monkeypatch.setattr(pdf_service.shutil, "which", _which_only())
        output_dir = tmp_path / "pages" / "doc"

        with pytest.raises(NoConverterAvailable) as exc_info:
            await PDFService().rasterize(tmp_path / "doc.pdf", output_dir)

        assert "pdftoppm" in str(exc_info.value)
        assert output_dir.is_dir()

    @posix_only
    @pytest.mark.asyncio
    async def test_rasterize_with_pdftoppm(self, tmp_path, monkeypatch):
        """Test a full run against a fake pdftoppm that writes pages out of order."""
        bin_dir = tmp_path / "bin"
        # argv: -png -rx DPI -ry DPI <pdf> <prefix>
        _fake_tool(bin_dir, "pdftoppm", 'for i in 3 1 2; do : > "$7-$i.png"; done\n: > "$7.log"')
        monkeypatch.setenv("PATH", str(bin_dir))
        pdf = tmp_path / "doc.pdf"
        pdf.write_bytes(b"%PDF-1.4")

        pages = await PDFService(dpi=100, timeout=10).rasterize(pdf, tmp_path / "out")

        assert [p.path.name for p in pages] == ["doc-1.png", "doc-2.png", "doc-3.png"]
        assert [p.number for p in pages] == [1, 2, 3]

    @posix_only
    @pytest.mark.asyncio
    async def test_nonzero_exit_raises(self, tmp_path, monkeypatch):
        """Test that the tool name and exit code are reported."""
        bin_dir = tmp_path / "bin"
        _fake_tool(bin_dir, "pdftoppm", "echo 'Syntax Error' >&2\nexit 3")
        monkeypatch.setenv("PATH", str(bin_dir))

        with pytest.raises(RasterizationFailed) as exc_info:
            await PDFService().rasterize(tmp_path / "doc.pdf", tmp_path / "out")

        assert exc_info.value.tool == "pdftoppm"
        assert exc_info.value.exit_code == 3
        assert "Syntax Error" in str(exc_info.value)

    @posix_only
    @pytest.mark.asyncio
    async def test_timeout_raises(self, tmp_path, monkeypatch):
        bin_dir = tmp_path / "bin"
        _fake_tool(bin_dir, "magick", "exec sleep 5")
        monkeypatch.setenv("PATH", f"{bin_dir}:/bin:/usr/bin")
        monkeypatch.setattr(pdf_service.shutil, "which", _which_only("magick"))

        with pytest.raises(RasterizationFailed) as exc_info:
            await PDFService(timeout=0.2).rasterize(tmp_path / "doc.pdf", tmp_path / "out")

        assert exc_info.value.exit_code is None
        assert "timed out" in str(exc_info.value)

    @posix_only
    @pytest.mark.asyncio
    async def test_no_matching_files_returns_empty(self, tmp_path, monkeypatch):
        bin_dir = tmp_path / "bin"
        _fake_tool(bin_dir, "pdftoppm", ': > "$7-001.ppm"')
        monkeypatch.setenv("PATH", str(bin_dir))

        pages = await PDFService().rasterize(tmp_path / "doc.pdf", tmp_path / "out")

        assert pages == []

    @pytest.mark.asyncio
    async def test_spawn_failure_raises(self, tmp_path, monkeypatch):
        """Test that a converter that can't be started is reported without an exit code."""
        monkeypatch.setattr(pdf_service.shutil, "which", _which_only("pdftoppm"))

        async def fail_to_spawn(*args, **kwargs):
            raise FileNotFoundError(2, "No such file or directory", "pdftoppm")

        monkeypatch.setattr(pdf_service.asyncio, "create_subprocess_exec", fail_to_spawn)

        with pytest.raises(RasterizationFailed) as exc_info:
            await PDFService().rasterize(tmp_path / "doc.pdf", tmp_path / "out")

        assert exc_info.value.tool == "pdftoppm"
        assert exc_info.value.exit_code is None
        assert "No such file or directory" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeout_when_process_already_gone(self, tmp_path, monkeypatch):
        """Test that a converter exiting right at the timeout still reports the timeout."""
        monkeypatch.setattr(pdf_service.shutil, "which", _which_only("pdftoppm"))

        class VanishedProcess:
            returncode = 0

            async def communicate(self):
                await asyncio.sleep(5)

            def kill(self):
                raise ProcessLookupError()

            async def wait(self):
                return 0

        async def spawn(*args, **kwargs):
            return VanishedProcess()

        monkeypatch.setattr(pdf_service.asyncio, "create_subprocess_exec", spawn)

        with pytest.raises(RasterizationFailed) as exc_info:
            await PDFService(timeout=0.05).rasterize(tmp_path / "doc.pdf", tmp_path / "out")

        assert exc_info.value.exit_code is None
        assert "timed out" in str(exc_info.value)
