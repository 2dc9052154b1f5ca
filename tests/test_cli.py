import logging

import pytest

from blockupload import cli
from blockupload.progress import ProgressLog
from blockupload.pool import WorkerPool
from blockupload.uploader import Uploader

from .fakes import FakeBackend

TOKEN = "https://acct.blob.core.windows.net/data?sv=1&sig=abc"


@pytest.fixture
def logger():
    return logging.getLogger("blockupload.tests")


def test_make_key_with_prefix(tmp_path):
    file = tmp_path / "sub" / "report.csv"
    assert cli._make_key(file, tmp_path, "2024/q1") == "2024/q1/sub/report.csv"
    assert cli._make_key(file, tmp_path, "") == "sub/report.csv"


def test_progress_path_is_flattened(tmp_path):
    path = cli._resolve_progress_path("a/b\\c.csv", tmp_path, None)
    assert path == tmp_path / "logs" / "a_b_c.csv.upload.json"

    override = tmp_path / "elsewhere"
    assert cli._resolve_progress_path("x", tmp_path, str(override)) == override / "x.upload.json"
    assert override.is_dir()


@pytest.mark.parametrize(
    "seconds, expected",
    [(0, "--:--"), (5, "5s"), (65, "1m05s"), (3725, "1h02m05s")],
)
def test_fmt_seconds(seconds, expected):
    assert cli._fmt_seconds(seconds) == expected


def test_upload_file_resumes_then_skips(tmp_path, logger):
    data = tmp_path / "data.bin"
    data.write_bytes(b"y" * 100)
    backend = FakeBackend(always_fail={0})
    uploader = Uploader(backend, pool=WorkerPool(workers=2, task_qsize=4))
    log_path = tmp_path / "logs" / "data.bin.upload.json"

    assert cli.upload_file(uploader, TOKEN, data, "data.bin", ProgressLog(log_path), logger) is False
    saved = ProgressLog(log_path)
    assert saved.load()
    assert saved.progresses[0].ctx == "partial-0"
    assert not saved.is_completed

    backend.always_fail.clear()
    assert cli.upload_file(uploader, TOKEN, data, "data.bin", ProgressLog(log_path), logger) is True
    assert backend.finalized[0]["ctxs"] == ["ctx-0"]
    assert backend.finalized[0]["key"] == "data.bin"

    calls = sum(backend.calls.values())
    assert cli.upload_file(uploader, TOKEN, data, "data.bin", ProgressLog(log_path), logger) is True
    assert sum(backend.calls.values()) == calls
    assert len(backend.finalized) == 1


def test_upload_file_starts_fresh_when_file_changed(tmp_path, logger):
    data = tmp_path / "data.bin"
    data.write_bytes(b"y" * 100)
    backend = FakeBackend()
    uploader = Uploader(backend, pool=WorkerPool(workers=1, task_qsize=1))
    log_path = tmp_path / "p.json"

    assert cli.upload_file(uploader, TOKEN, data, "k", ProgressLog(log_path), logger)
    data.write_bytes(b"z" * 200)
    assert cli.upload_file(uploader, TOKEN, data, "k", ProgressLog(log_path), logger)

    assert [f["fsize"] for f in backend.finalized] == [100, 200]


def test_upload_file_without_key(tmp_path, logger):
    data = tmp_path / "data.bin"
    data.write_bytes(b"y")
    backend = FakeBackend()
    uploader = Uploader(backend, pool=WorkerPool(workers=1, task_qsize=1))

    assert cli.upload_file(uploader, TOKEN, data, None, ProgressLog(tmp_path / "p.json"), logger)
    assert backend.sessions == [(TOKEN, "", False)]


def test_main_requires_token(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("UPLOAD_TOKEN", raising=False)
    with pytest.raises(SystemExit) as excinfo:
        cli.main([str(tmp_path)])
    assert excinfo.value.code == 1


def test_main_dry_run(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("UPLOAD_TOKEN", TOKEN)
    src = tmp_path / "src"
    (src / "sub").mkdir(parents=True)
    (src / "a.txt").write_text("a")
    (src / "sub" / "b.txt").write_text("bb")

    with pytest.raises(SystemExit) as excinfo:
        cli.main([str(src), "--dry-run", "--key-prefix", "2024"])
    assert excinfo.value.code == 0


def test_main_rejects_key_for_directory(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("UPLOAD_TOKEN", TOKEN)
    src = tmp_path / "src"
    src.mkdir()
    (src / "a.txt").write_text("a")

    with pytest.raises(SystemExit) as excinfo:
        cli.main([str(src), "--no-key"])
    assert excinfo.value.code == 1
