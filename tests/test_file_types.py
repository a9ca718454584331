"""Tests for upload classification."""
import pytest

from app.models.share import ContentType
from app.utils.file_types import (
    FILE_TYPES,
    MB,
    detect_content_type,
    detect_syntax,
    get_file_extension,
)


class TestExtension:
    def test_double_extensions(self):
        assert get_file_extension("backup.TAR.GZ") == ".tar.gz"
        assert get_file_extension("src.tar.bz2") == ".tar.bz2"

    def test_single_extension(self):
        assert get_file_extension("Diagram.PNG") == ".png"
        assert get_file_extension("Makefile") == ""


class TestDetectContentType:
    @pytest.mark.parametrize(
        "filename,mime,expected",
        [
            ("cat.png", "image/png", ContentType.IMAGE),
            ("cat.png", None, ContentType.IMAGE),
            ("blob", "image/webp", ContentType.IMAGE),
            ("release.tar.gz", "application/octet-stream", ContentType.ARCHIVE),
            ("bundle.zip", None, ContentType.ARCHIVE),
            ("report.pdf", "application/pdf", ContentType.DOCUMENT),
            ("notes.txt", None, ContentType.DOCUMENT),
            ("main.py", "text/plain", ContentType.DOCUMENT),
        ],
    )
    def test_supported(self, filename, mime, expected):
        assert detect_content_type(filename, mime) == expected

    @pytest.mark.parametrize(
        "filename,mime",
        [
            ("clip.mp4", "video/mp4"),
            ("tool.exe", "application/x-msdownload"),
            ("noext", None),
        ],
    )
    def test_unsupported(self, filename, mime):
        assert detect_content_type(filename, mime) is None


def test_size_limits():
    assert FILE_TYPES[ContentType.IMAGE].max_size == 10 * MB
    assert FILE_TYPES[ContentType.DOCUMENT].max_size == 25 * MB
    assert FILE_TYPES[ContentType.ARCHIVE].max_size == 50 * MB


def test_detect_syntax():
    assert detect_syntax("main.py") == "python"
    assert detect_syntax("config.yml") == "yaml"
    assert detect_syntax("report.pdf") == "plaintext"
