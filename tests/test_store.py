from datetime import datetime, timezone

from garlic_bridge.store import PlayerIdentityStore, file_timestamp, persist_player_id


def test_store_starts_empty():
    store = PlayerIdentityStore()
    assert store.current() is None
    assert store.list_all() == []
    assert store.current_player_id() == ""
    assert store.current_player_id("fallback") == "fallback"


def test_record_replaces_previous_identity():
    store = PlayerIdentityStore()
    store.record("a", "a.xml", "192.168.1.10")
    latest = store.record("b", "b.xml", "192.168.1.11")

    assert store.list_all() == [latest]
    assert store.get("a") is None
    assert store.get("b") == latest
    assert store.current_player_id("fallback") == "b"


def test_find_by_ip_matches_substring():
    store = PlayerIdentityStore()
    store.record("dev", "info.xml", "::ffff:192.168.1.50")

    assert store.find_by_ip("192.168.1.50").player_id == "dev"
    assert store.find_by_ip("168.1") is not None
    assert store.find_by_ip("10.0.0.1") is None


def test_file_timestamp_is_filesystem_safe():
    moment = datetime(2025, 1, 31, 8, 15, 0, 123000, tzinfo=timezone.utc)
    assert file_timestamp(moment) == "2025-01-31T08-15-00"


def test_persist_player_id_creates_and_updates(tmp_path):
    env_file = tmp_path / "conf" / ".env"
    assert persist_player_id(str(env_file), "first") is True
    assert "DEFAULT_PLAYER_ID=first" in env_file.read_text()

    env_file.write_text("UPLOAD_API_URL=http://backend/upload\nDEFAULT_PLAYER_ID=first\n")
    assert persist_player_id(str(env_file), "second") is True
    content = env_file.read_text()
    assert content.count("DEFAULT_PLAYER_ID=") == 1
    assert "DEFAULT_PLAYER_ID=second" in content
    assert "UPLOAD_API_URL=http://backend/upload" in content
