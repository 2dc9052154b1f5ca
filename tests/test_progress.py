import json

from blockupload.models import BlockResult
from blockupload.progress import ProgressLog

MiB = 1024 * 1024


def test_missing_file_does_not_load(tmp_path):
    assert ProgressLog(tmp_path / "none.json").load() is False


def test_corrupt_file_does_not_load(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("{not json", encoding="utf-8")
    assert ProgressLog(path).load() is False


def test_saved_progress_can_be_resumed(tmp_path):
    path = tmp_path / "logs" / "k.upload.json"
    log = ProgressLog(path)
    log.reset(10 * MiB)
    log.mark_started("/data/big.bin", 10 * MiB, "big.bin")
    log.progresses[1].ctx = "abc"
    log.progresses[1].offset = 4 * MiB
    log.progresses[1].host = "https://acct.blob.core.windows.net"
    log.on_block(1, 4 * MiB, log.progresses[1])

    again = ProgressLog(path)
    assert again.load() is True
    assert again.matches("/data/big.bin", 10 * MiB, "big.bin")
    assert not again.matches("/data/big.bin", 10 * MiB + 1, "big.bin")
    assert not again.matches("/data/big.bin", 10 * MiB, "other")
    assert again.progresses[1] == BlockResult(
        ctx="abc", offset=4 * MiB, host="https://acct.blob.core.windows.net"
    )
    assert again.progresses[0] == BlockResult()
    assert not again.is_completed


def test_mark_completed_is_kept_on_disk(tmp_path):
    path = tmp_path / "k.upload.json"
    log = ProgressLog(path)
    log.reset(1)
    log.mark_started("/data/one", 1, None)
    log.mark_completed()

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["completed"] is True
    assert data["completed_at"]
    assert data["key"] is None
    assert data["block_count"] == 1
    assert not path.with_suffix(".tmp").exists()


def test_partial_progress_saves_are_rate_limited(tmp_path, monkeypatch):
    log = ProgressLog(tmp_path / "k.upload.json", save_interval=3600)
    log.reset(10 * MiB)
    log.mark_started("/data/big.bin", 10 * MiB, "big.bin")

    saves = []
    monkeypatch.setattr(log, "save", lambda: saves.append(1))

    partial = BlockResult(ctx="a", offset=256 * 1024)
    for _ in range(16):
        log.on_block(0, 4 * MiB, partial)
    assert saves == []

    log.on_block(0, 4 * MiB, BlockResult(ctx="a", offset=4 * MiB))
    assert saves == [1]


def test_partial_progress_saved_once_interval_elapsed(tmp_path):
    path = tmp_path / "k.upload.json"
    log = ProgressLog(path, save_interval=0)
    log.reset(10 * MiB)
    log.mark_started("/data/big.bin", 10 * MiB, "big.bin")

    log.progresses[2].ctx = "partial"
    log.progresses[2].offset = 1024
    log.on_block(2, 2 * MiB, log.progresses[2])

    again = ProgressLog(path)
    assert again.load()
    assert again.progresses[2].offset == 1024
