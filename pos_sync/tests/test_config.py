import json

from pos_sync.app.config import Settings, load_config


def test_env_overrides_config_file(tmp_path, monkeypatch):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"cloud_server": "https://file.example", "drain_interval_seconds": 10, "junk": 1}))
    monkeypatch.setenv("POS_CLOUD_SERVER", "https://env.example/")
    monkeypatch.delenv("POS_DRAIN_INTERVAL_SECONDS", raising=False)

    cfg = load_config(str(path))
    assert "junk" not in cfg
    s = Settings(cfg)
    assert s.cloud_server == "https://env.example"
    assert s.drain_interval_seconds == 10.0


def test_malformed_values_fall_back_to_defaults():
    s = Settings({"retry_max_attempts": "three", "resolver_ttl_seconds": "", "fallback_policy": "maybe"})
    assert s.retry_max_attempts == 3
    assert s.resolver_ttl_seconds == 5.0
    assert s.fallback_policy == "keep_queued"


def test_candidates_keep_priority_and_skip_blanks():
    s = Settings({"cloud_server": "", "local_server": "http://10.0.0.2:3001", "dev_server": "http://localhost:3001"})
    assert s.candidates() == [("local", "http://10.0.0.2:3001"), ("localhost", "http://localhost:3001")]


def test_background_sync_flag():
    assert Settings({"background_sync": "0"}).background_sync is False
    assert Settings({"background_sync": "yes"}).background_sync is True
