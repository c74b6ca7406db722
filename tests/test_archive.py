from __future__ import annotations

from pathlib import Path
from zipfile import ZipFile

import pytest

from vault_backup.archive import ArchiveFinalizer, package_directory_as_zip
from vault_backup.errors import ArchiveError


def _export_tree(root: Path) -> Path:
    export_root = root / "ops@example.com"
    (export_root / "attachments" / "Passport").mkdir(parents=True)
    (export_root / "personal.json").write_text("{}", encoding="utf-8")
    (export_root / "organization_org-a.json").write_text("{}", encoding="utf-8")
    (export_root / "attachments" / "Passport" / "scan.pdf").write_bytes(b"%PDF")
    return export_root


def test_bundle_replaces_directory_with_sibling_archive(tmp_path: Path):
    export_root = _export_tree(tmp_path)
    archive = ArchiveFinalizer().bundle(export_root)

    assert archive == tmp_path / "ops@example.com.zip"
    assert not export_root.exists()
    with ZipFile(archive) as zf:
        assert sorted(zf.namelist()) == [
            "attachments/Passport/scan.pdf",
            "organization_org-a.json",
            "personal.json",
        ]
        assert zf.read("attachments/Passport/scan.pdf") == b"%PDF"
    assert [p.name for p in tmp_path.iterdir()] == ["ops@example.com.zip"]


def test_bundle_overwrites_existing_archive(tmp_path: Path):
    stale = tmp_path / "ops@example.com.zip"
    stale.write_bytes(b"stale")
    archive = ArchiveFinalizer().bundle(_export_tree(tmp_path))
    assert archive == stale
    with ZipFile(archive) as zf:
        assert "personal.json" in zf.namelist()


def test_bundle_missing_directory(tmp_path: Path):
    with pytest.raises(ArchiveError):
        ArchiveFinalizer().bundle(tmp_path / "nobody@example.com")


def test_bundle_keeps_directory_when_write_fails(tmp_path: Path, monkeypatch):
    export_root = _export_tree(tmp_path)

    def _broken(source: Path, destination: Path) -> Path:
        raise OSError("disk full")

    monkeypatch.setattr("vault_backup.archive.package_directory_as_zip", _broken)
    with pytest.raises(ArchiveError):
        ArchiveFinalizer().bundle(export_root)
    assert (export_root / "personal.json").exists()
    assert not (tmp_path / "ops@example.com.zip").exists()
    assert sorted(p.name for p in tmp_path.iterdir()) == ["ops@example.com"]


def test_package_directory_requires_directory(tmp_path: Path):
    not_dir = tmp_path / "file.txt"
    not_dir.write_text("x", encoding="utf-8")
    with pytest.raises(ArchiveError):
        package_directory_as_zip(not_dir, tmp_path / "out.zip")
