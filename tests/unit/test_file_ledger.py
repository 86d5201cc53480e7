"""Unit tests for the per-request file ledger."""

from __future__ import annotations

import pytest

from crowdsource_service.services.file_ledger import FileLedger, remove_path


@pytest.mark.unit
def test_failure_removes_created_and_keeps_superseded(tmp_path) -> None:
    created_file = tmp_path / "new.png"
    created_directory = tmp_path / "work"
    old_file = tmp_path / "old.png"
    old_file.write_bytes(b"old")

    with pytest.raises(RuntimeError), FileLedger() as ledger:
        ledger.track(created_file).write_bytes(b"new")
        ledger.track(created_directory).mkdir()
        (created_directory / "1.png").write_bytes(b"x")
        ledger.supersede(old_file)
        raise RuntimeError("write failed")

    assert not created_file.exists()
    assert not created_directory.exists()
    assert old_file.exists()


@pytest.mark.unit
def test_success_keeps_created_and_removes_superseded(tmp_path) -> None:
    created_file = tmp_path / "new.png"
    old_directory = tmp_path / "old-work"
    old_directory.mkdir()
    (old_directory / "1.png").write_bytes(b"x")

    with FileLedger() as ledger:
        ledger.track(created_file).write_bytes(b"new")
        ledger.supersede(old_directory)
        assert ledger.created == (created_file,)
        assert ledger.superseded == (old_directory,)

    assert created_file.exists()
    assert not old_directory.exists()
    assert ledger.created == ()
    assert ledger.superseded == ()


@pytest.mark.unit
def test_remove_path_tolerates_missing_files(tmp_path) -> None:
    assert remove_path(tmp_path / "missing.png") is True


@pytest.mark.unit
def test_remove_path_logs_and_continues_on_failure(tmp_path, monkeypatch) -> None:
    """Deletion failures are reported, never raised."""
    target = tmp_path / "stuck"
    target.mkdir()

    def refuse(path, *args, **kwargs):
        raise PermissionError(f"cannot remove {path}")

    monkeypatch.setattr("crowdsource_service.services.file_ledger.shutil.rmtree", refuse)

    assert remove_path(target) is False
    with FileLedger() as ledger:
        ledger.supersede(target)
    assert target.exists()
