"""Tests for driver session persistence."""

import json
import os
import stat

from gaterunner.session import SessionStore


class TestSessionStore:
    def test_missing_file(self, tmp_path):
        store = SessionStore(str(tmp_path / "session.json"))
        assert store.load() is None

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "nested" / "session.json"
        store = SessionStore(str(path))

        assert store.save("1BVtsOK") is True
        assert store.load() == "1BVtsOK"
        data = json.loads(path.read_text())
        assert data["string_session"] == "1BVtsOK"
        assert "last_updated" in data

    def test_owner_only_permissions(self, tmp_path):
        path = tmp_path / "session.json"
        SessionStore(str(path)).save("secret")
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "session.json"
        path.write_text("{not json")
        assert SessionStore(str(path)).load() is None

    def test_clear(self, tmp_path):
        path = tmp_path / "session.json"
        store = SessionStore(str(path))
        store.save("secret")
        assert store.clear() is True
        assert not path.exists()
        assert store.clear() is True
