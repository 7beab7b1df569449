from pathlib import Path

import pytest

from ingestion.file_loader import FileLoader


def test_load_files(tmp_path: Path):
    (tmp_path / "note.txt").write_text("Assessment/Plan: tinnitus")
    (tmp_path / "scan.pdf").write_bytes(b"%PDF-1.4")
    (tmp_path / "blob").write_bytes(b"\x00\x01")
    (tmp_path / ".DS_Store").write_bytes(b"x")
    (tmp_path / "nested").mkdir()

    loader = FileLoader(str(tmp_path))
    documents = loader.load_files()

    assert list(documents) == ["blob", "note.txt", "scan.pdf"]
    assert documents["note.txt"].mime_type == "text/plain"
    assert documents["note.txt"].data == b"Assessment/Plan: tinnitus"
    assert documents["scan.pdf"].mime_type == "application/pdf"
    assert documents["blob"].mime_type == "application/octet-stream"


def test_missing_input_dir(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        FileLoader(str(tmp_path / "missing"))
