"""Path exclusion rules shared by the read-time filter and directory scans.

The store keeps every indexed chunk; these rules only decide what is
searchable (and what a directory scan offers for indexing).
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import PurePath

SKIP_DIRS: frozenset[str] = frozenset(
    [
        "node_modules", ".git", ".svn", ".hg", "vendor",
        "venv", ".venv", "env", "__pycache__", ".pytest_cache",
        ".idea", ".vscode", "build", "dist", "target",
        ".next", ".nuxt", "coverage", ".nyc_output",
    ]
)

DOC_FILE_PREFIXES: tuple[str, ...] = ("readme", "changelog", "license", "contributing", "authors")

CODE_EXTENSIONS: frozenset[str] = frozenset(
    [
        # Programming languages
        "swift", "py", "js", "ts", "jsx", "tsx", "java", "kt", "kts",
        "c", "cpp", "cc", "cxx", "h", "hpp", "cs", "go", "rs", "rb",
        "php", "pl", "lua", "r", "m", "mm", "scala", "sh", "bash",
        "zsh", "fish", "ps1", "psm1", "sql", "dart", "ex", "exs",
        # Config and data files
        "json", "xml", "yaml", "yml", "toml", "ini", "cfg", "conf",
        "plist", "gradle", "cmake", "make", "dockerfile",
        # Web and markup
        "html", "htm", "css", "scss", "sass", "less", "vue", "svelte",
        # Build and package files
        "lock", "podspec", "gemfile", "rakefile", "makefile",
    ]
)

IMAGE_EXTENSIONS: frozenset[str] = frozenset(
    ["jpg", "jpeg", "png", "tiff", "tif", "bmp", "gif", "heic", "heif", "webp"]
)


def extension_of(name: str) -> str:
    """Lowercased extension without the dot (``""`` if none)."""
    return PurePath(name).suffix.lower().lstrip(".")


def is_common_doc_file(name: str) -> bool:
    """README, CHANGELOG, LICENSE, CONTRIBUTING, AUTHORS (any extension)."""
    lower = name.lower()
    stem = PurePath(lower).stem
    return any(stem == p or lower.startswith(p + ".") for p in DOC_FILE_PREFIXES)


def has_skipped_segment(path: str) -> bool:
    """True if any directory segment of *path* is in SKIP_DIRS."""
    parts = PurePath(path).parts[:-1]
    return any(part.lower() in SKIP_DIRS for part in parts)


def excluded_extensions(*, skip_code_files: bool, skip_images: bool) -> frozenset[str]:
    """Extension blocklist derived from the index settings."""
    exts: set[str] = set()
    if skip_code_files:
        exts |= CODE_EXTENSIONS
    if skip_images:
        exts |= IMAGE_EXTENSIONS
    return frozenset(exts)


def is_searchable(path: str, name: str, exclude_extensions: Iterable[str] = ()) -> bool:
    """Apply all read-time exclusion rules to one stored file."""
    excluded = {e.lower().lstrip(".") for e in exclude_extensions}
    if excluded and extension_of(name) in excluded:
        return False
    if is_common_doc_file(name):
        return False
    return not has_skipped_segment(path)
