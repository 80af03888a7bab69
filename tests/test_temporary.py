import pytest

from avsampler.temporary import (
    TempKind,
    add,
    clean,
    clean_all,
    process_dir,
    unadd,
)


@pytest.fixture(autouse=True)
def _fresh_registry():
    clean_all()
    yield
    clean_all()


def test_clean_all_removes_files_and_dirs(tmp_path):
    folder = tmp_path / "d"
    folder.mkdir()
    inner = folder / "a.mkv"
    inner.write_bytes(b"x")
    add(folder, TempKind.KEEPABLE)
    add(inner, TempKind.KEEPABLE)
    clean(False)
    assert not inner.exists()
    assert not folder.exists()


def test_clean_keeping_keepables(tmp_path):
    keep = tmp_path / "keep.mkv"
    drop = tmp_path / "drop.mkv"
    keep.write_bytes(b"k")
    drop.write_bytes(b"d")
    add(keep, TempKind.KEEPABLE)
    add(drop, TempKind.NOT_KEEPABLE)
    clean(True)
    assert keep.exists()
    assert not drop.exists()
    assert unadd(keep) is True
    assert unadd(drop) is False


def test_unadd_prevents_deletion(tmp_path):
    file = tmp_path / "f.mkv"
    file.write_bytes(b"x")
    add(file, TempKind.NOT_KEEPABLE)
    assert unadd(file) is True
    assert unadd(file) is False
    clean_all()
    assert file.exists()


def test_missing_files_are_ignored(tmp_path):
    add(tmp_path / "missing", TempKind.NOT_KEEPABLE)
    clean_all()
    assert unadd(tmp_path / "missing") is False


def test_process_dir_is_stable_and_created(tmp_path):
    first = process_dir(tmp_path)
    second = process_dir(tmp_path)
    assert first == second
    assert first.is_dir()
    assert first.parent == tmp_path
    assert first.name.startswith(".avsampler-")
    clean_all()
    assert not first.exists()


def test_process_dir_defaults_to_cwd(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    path = process_dir(None)
    assert path.parent == tmp_path
    assert path.is_dir()