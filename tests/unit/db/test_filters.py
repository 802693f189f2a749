"""Tests for read-time exclusion rules."""

from __future__ import annotations

import pytest

from quarry.db.filters import (
    CODE_EXTENSIONS,
    IMAGE_EXTENSIONS,
    excluded_extensions,
    extension_of,
    has_skipped_segment,
    is_common_doc_file,
    is_searchable,
)


@pytest.mark.parametrize("name,expected", [
    ("report.PDF", "pdf"),
    ("archive.tar.gz", "gz"),
    ("Makefile", ""),
    ("notes.md", "md"),
])
def test_extension_of(name, expected):
    assert extension_of(name) == expected


@pytest.mark.parametrize("name", ["README.md", "readme", "CHANGELOG.txt", "LICENSE", "Contributing.rst"])
def test_common_doc_files(name):
    assert is_common_doc_file(name)


@pytest.mark.parametrize("name", ["readme_notes_2024.md", "licenses-overview.pdf", "report.md"])
def test_not_common_doc_files(name):
    assert not is_common_doc_file(name)


def test_skipped_segment_detected():
    assert has_skipped_segment("/home/u/project/node_modules/pkg/doc.md")
    assert has_skipped_segment("/home/u/project/.git/HEAD")


def test_skipped_segment_ignores_file_name():
    # Only directory segments count
    assert not has_skipped_segment("/home/u/notes/build")


def test_excluded_extensions_flags():
    assert excluded_extensions(skip_code_files=False, skip_images=False) == frozenset()
    assert excluded_extensions(skip_code_files=True, skip_images=False) == CODE_EXTENSIONS
    both = excluded_extensions(skip_code_files=True, skip_images=True)
    assert both == CODE_EXTENSIONS | IMAGE_EXTENSIONS


def test_is_searchable_rules():
    assert is_searchable("/docs/plan.md", "plan.md")
    assert not is_searchable("/docs/main.py", "main.py", {"py"})
    assert not is_searchable("/docs/main.py", "main.py", {".PY"})
    assert not is_searchable("/docs/README.md", "README.md")
    assert not is_searchable("/docs/venv/lib/notes.txt", "notes.txt")
