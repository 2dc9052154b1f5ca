import pytest

from blockupload import config
from blockupload.config import Settings, get_settings, set_settings, settings_from_env


def test_defaults():
    s = Settings().with_defaults()
    assert s == Settings(task_qsize=16, workers=4, chunk_size=256 * 1024, try_times=3)


def test_set_settings_fills_only_zero_fields():
    set_settings(Settings(workers=6, try_times=5))
    s = get_settings()
    assert s.workers == 6
    assert s.task_qsize == 24
    assert s.chunk_size == config.DEFAULT_CHUNK_SIZE
    assert s.try_times == 5


def test_set_settings_copies_value():
    v = Settings(workers=2)
    set_settings(v)
    v.workers = 9
    assert get_settings().workers == 2
    assert v.task_qsize == 0


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("BLOCKUPLOAD_WORKERS", "8")
    monkeypatch.setenv("BLOCKUPLOAD_CHUNK_SIZE_KB", "512")
    monkeypatch.delenv("BLOCKUPLOAD_TASK_QSIZE", raising=False)
    monkeypatch.delenv("BLOCKUPLOAD_TRY_TIMES", raising=False)

    s = settings_from_env()
    assert s.workers == 8
    assert s.task_qsize == 32
    assert s.chunk_size == 512 * 1024
    assert s.try_times == 3


def test_settings_from_env_rejects_garbage(monkeypatch):
    monkeypatch.setenv("BLOCKUPLOAD_TRY_TIMES", "many")
    with pytest.raises(ValueError, match="BLOCKUPLOAD_TRY_TIMES"):
        settings_from_env()


def test_cli_config_validates_token(monkeypatch):
    monkeypatch.setenv("UPLOAD_TOKEN", "http://acct.blob.core.windows.net/c?sig=x")
    with pytest.raises(ValueError, match="https"):
        config.CliConfig()


def test_cli_config_reads_token(monkeypatch):
    monkeypatch.setenv("UPLOAD_TOKEN", "https://acct.blob.core.windows.net/data?sv=1&sig=abc")
    monkeypatch.setenv("KEY_PREFIX", "/2024/q1/")
    cfg = config.CliConfig()
    assert cfg.token.container == "data"
    assert cfg.key_prefix == "2024/q1"
