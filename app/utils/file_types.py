"""
Upload classification and syntax tables.
"""
from pathlib import PurePosixPath
from typing import Dict, FrozenSet, NamedTuple, Optional

from app.models.share import ContentType

DEFAULT_SYNTAX = "plaintext"

# 하이라이팅 언어 (닫힌 집합)
SYNTAX_OPTIONS: FrozenSet[str] = frozenset({
    "plaintext", "javascript", "typescript", "python", "java", "csharp",
    "cpp", "go", "rust", "php", "ruby", "swift", "kotlin", "html", "css",
    "scss", "json", "xml", "yaml", "markdown", "sql", "bash", "powershell",
    "dockerfile",
})


class FileTypeRule(NamedTuple):
    extensions: FrozenSet[str]
    mime_types: FrozenSet[str]
    max_size: int
    label: str


MB = 1024 * 1024

# 검사 순서: image → archive → document
FILE_TYPES: Dict[ContentType, FileTypeRule] = {
    ContentType.IMAGE: FileTypeRule(
        extensions=frozenset({".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".ico", ".bmp"}),
        mime_types=frozenset({
            "image/png", "image/jpeg", "image/gif", "image/webp",
            "image/svg+xml", "image/x-icon", "image/bmp",
        }),
        max_size=10 * MB,
        label="images",
    ),
    ContentType.ARCHIVE: FileTypeRule(
        extensions=frozenset({
            ".zip", ".rar", ".7z", ".tar", ".tar.gz", ".tgz", ".tar.bz2", ".tbz2", ".gz", ".bz2",
        }),
        mime_types=frozenset({
            "application/zip", "application/x-zip-compressed",
            "application/x-rar-compressed", "application/vnd.rar",
            "application/x-7z-compressed", "application/x-tar",
            "application/gzip", "application/x-gzip", "application/x-bzip2",
            "application/x-compressed-tar",
        }),
        max_size=50 * MB,
        label="archives",
    ),
    ContentType.DOCUMENT: FileTypeRule(
        extensions=frozenset({
            ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".pdf",
            ".odt", ".ods", ".odp", ".txt", ".rtf", ".csv",
        }),
        mime_types=frozenset({
            "application/msword",
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
            "application/vnd.ms-excel",
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            "application/vnd.ms-powerpoint",
            "application/vnd.openxmlformats-officedocument.presentationml.presentation",
            "application/pdf",
            "application/vnd.oasis.opendocument.text",
            "application/vnd.oasis.opendocument.spreadsheet",
            "application/vnd.oasis.opendocument.presentation",
            "text/plain", "application/rtf", "text/csv",
        }),
        max_size=25 * MB,
        label="documents",
    ),
}

EXTENSION_TO_SYNTAX: Dict[str, str] = {
    ".js": "javascript", ".jsx": "javascript",
    ".ts": "typescript", ".tsx": "typescript",
    ".py": "python", ".java": "java",
    ".cpp": "cpp", ".cc": "cpp", ".c": "cpp", ".h": "cpp", ".hpp": "cpp",
    ".cs": "csharp", ".go": "go", ".rs": "rust", ".php": "php",
    ".rb": "ruby", ".swift": "swift", ".kt": "kotlin",
    ".html": "html", ".htm": "html", ".css": "css", ".less": "css",
    ".scss": "scss", ".sass": "scss", ".json": "json", ".xml": "xml",
    ".yaml": "yaml", ".yml": "yaml", ".toml": "yaml", ".ini": "yaml",
    ".md": "markdown", ".markdown": "markdown", ".sql": "sql",
    ".sh": "bash", ".bash": "bash", ".zsh": "bash", ".ps1": "powershell",
    ".dockerfile": "dockerfile", ".txt": "plaintext", ".log": "plaintext",
}


def get_file_extension(filename: str) -> str:
    """Lowercased extension, with .tar.gz / .tar.bz2 treated as one."""
    name = filename.lower()
    for double in (".tar.gz", ".tar.bz2"):
        if name.endswith(double):
            return double
    return PurePosixPath(name).suffix


def detect_content_type(filename: str, mime_type: Optional[str]) -> Optional[ContentType]:
    """
    Classify an upload by extension or MIME type.

    Returns:
        ContentType, or None when the file type is not supported
    """
    extension = get_file_extension(filename)
    for content_type, rule in FILE_TYPES.items():
        if extension in rule.extensions or (mime_type and mime_type in rule.mime_types):
            return content_type
    return None


def detect_syntax(filename: str) -> str:
    return EXTENSION_TO_SYNTAX.get(get_file_extension(filename), DEFAULT_SYNTAX)


# 분류할 수 없는 업로드에 적용되는 읽기 상한
MAX_UPLOAD_SIZE = max(rule.max_size for rule in FILE_TYPES.values())


def upload_size_limit(filename: str, mime_type: Optional[str]) -> int:
    """Byte limit for an upload; unsupported types get the largest limit."""
    content_type = detect_content_type(filename, mime_type)
    if content_type is None:
        return MAX_UPLOAD_SIZE
    return FILE_TYPES[content_type].max_size
