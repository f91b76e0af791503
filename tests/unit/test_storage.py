"""
Unit tests for session and download marker persistence.
"""
import json

import pytest

from steam_depot import utils
from steam_depot.models import DownloadMarker, Session
from steam_depot.storage import MarkerStore, SessionStore


class TestSessionStore:
    """Tests for SessionStore."""

    def test_no_directory(self, tmp_path):
        store = SessionStore(tmp_path / "missing")

        assert not store.has_saved_session()
        assert store.load() is None

    def test_save_and_load(self, session_store):
        path = session_store.save(Session(username="farmer", refresh_token="tok-1"))

        assert path.name == "session-farmer.json"
        assert session_store.has_saved_session()
        assert session_store.load() == Session(username="farmer", refresh_token="tok-1")
        assert json.loads(path.read_text()) == {"username": "farmer", "refreshToken": "tok-1"}

    def test_save_replaces_wholesale(self, session_store):
        session_store.save(Session(username="farmer", refresh_token="old"))
        session_store.save(Session(username="farmer", refresh_token="new"))

        assert session_store.load().refresh_token == "new"
        assert len(list(session_store.session_dir.iterdir())) == 1

    def test_crash_before_rename_keeps_prior_session(self, session_store, monkeypatch):
        session_store.save(Session(username="farmer", refresh_token="valid"))

        def crash(src, dst):
            raise OSError("power loss")

        monkeypatch.setattr(utils.os, "replace", crash)
        with pytest.raises(OSError):
            session_store.save(Session(username="farmer", refresh_token="half-written"))
        monkeypatch.undo()

        assert session_store.load().refresh_token == "valid"

    def test_corrupt_session_is_ignored(self, session_store):
        session_store.session_dir.mkdir(parents=True)
        (session_store.session_dir / "session-farmer.json").write_text("{not json")

        assert session_store.has_saved_session()
        assert session_store.load() is None

    def test_first_session_by_name(self, session_store):
        session_store.save(Session(username="zed", refresh_token="z"))
        session_store.save(Session(username="abby", refresh_token="a"))

        assert session_store.load().username == "abby"

    def test_delete(self, session_store):
        session_store.save(Session(username="farmer", refresh_token="tok"))

        assert session_store.delete("farmer")
        assert not session_store.delete("farmer")
        assert not session_store.has_saved_session()


class TestMarkerStore:
    """Tests for MarkerStore."""

    def make_marker(self, manifest_id=42):
        return DownloadMarker.create(app_id=413150, depot_id=413153, manifest_id=manifest_id,
                                     target_os="linux", total_bytes=10, total_files=1)

    def test_path(self, tmp_path):
        assert MarkerStore(tmp_path).path_for(413150).name == ".download-manifest-413150"

    def test_is_current(self, tmp_path):
        store = MarkerStore(tmp_path)
        assert not store.is_current(413150, 42)

        store.save(self.make_marker(42))

        assert store.is_current(413150, 42)
        assert not store.is_current(413150, 43)
        assert store.load(413150).total_files == 1

    def test_corrupt_marker_treated_as_absent(self, tmp_path):
        store = MarkerStore(tmp_path)
        store.path_for(413150).write_text('{"appId": 413150}')

        assert store.load(413150) is None
        assert not store.is_current(413150, 42)
