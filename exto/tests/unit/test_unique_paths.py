from __future__ import annotations

import os

import pytest

from exto.core.errors import FilePathExhaustedError
from exto.services.file_paths import UniquePathAllocator


def _ids(*values: str):
    queue = list(values)

    def _next() -> str:
        return queue.pop(0)

    return _next


def test_existing_path_is_never_returned(tmp_path) -> None:
    org_dir = tmp_path / "org1"
    org_dir.mkdir()
    (org_dir / "abc1234_invoice.pdf").write_bytes(b"taken")
    allocator = UniquePathAllocator(
        id_length=7,
        max_id_length=10,
        attempts_per_length=5,
        id_source=_ids("abc1234ffff", "def5678ffff"),
    )

    path = allocator.allocate(str(tmp_path), "org1", "invoice.pdf")

    assert path == os.path.join(str(tmp_path), "org1", "def5678_invoice.pdf")


def test_escalates_id_length_after_collisions(tmp_path) -> None:
    checked: list[str] = []

    def exists(path: str) -> bool:
        checked.append(path)
        # Every 7-character candidate is taken.
        return os.path.basename(path).index("_") == 7

    allocator = UniquePathAllocator(
        id_length=7,
        max_id_length=10,
        attempts_per_length=5,
        id_source=lambda: "abcdef0123456789",
        exists=exists,
    )

    path = allocator.allocate(str(tmp_path), "org1", "invoice.pdf")

    assert len(checked) == 6
    assert os.path.basename(path) == "abcdef01_invoice.pdf"


def test_filename_is_lowercased_and_stripped_of_directories(tmp_path) -> None:
    allocator = UniquePathAllocator(id_length=7, max_id_length=7, attempts_per_length=1, id_source=lambda: "x" * 32)

    path = allocator.allocate(str(tmp_path), "org1", "../../Etc/Invoice.PDF")

    assert path == os.path.join(str(tmp_path), "org1", "xxxxxxx_invoice.pdf")
    assert os.path.isdir(os.path.join(str(tmp_path), "org1"))


def test_exhaustion_raises(tmp_path) -> None:
    allocator = UniquePathAllocator(
        id_length=7,
        max_id_length=8,
        attempts_per_length=2,
        id_source=lambda: "a" * 32,
        exists=lambda path: True,
    )

    with pytest.raises(FilePathExhaustedError):
        allocator.allocate(str(tmp_path), "org1", "invoice.pdf")
