from __future__ import annotations

import asyncio
import threading

import pytest

from b256_client import stores
from b256_client.models import Session
from b256_client.stores import CookieStore, PreferenceManager


class TestCookieStore:
    def test_empty_store(self, cookie_store):
        assert cookie_store.all() == {}

    def test_save_keeps_other_hosts(self, cookie_store):
        cookie_store.save("a.test", ["x=1; path=/"])
        cookie_store.save("b.test", ["y=2; path=/", "z=3; path=/"])
        cookie_store.save("a.test", ["x=4; path=/"])

        assert cookie_store.all() == {
            "a.test": ["x=4; path=/"],
            "b.test": ["y=2; path=/", "z=3; path=/"],
        }

    def test_clear(self, cookie_store):
        cookie_store.save("a.test", ["x=1"])
        cookie_store.clear()
        assert cookie_store.all() == {}

    def test_corrupt_file_reads_as_empty(self, tmp_path):
        path = tmp_path / "cookies.json"
        path.write_text("{not json", encoding="utf-8")
        assert CookieStore(str(path)).all() == {}

    def test_survives_reopen(self, tmp_path):
        path = str(tmp_path / "nested" / "cookies.json")
        CookieStore(path).save("a.test", ["x=1"])
        assert CookieStore(path).all() == {"a.test": ["x=1"]}


class TestPreferenceManager:
    def test_no_session_initially(self, preference):
        assert preference.load() is None
        assert preference.current_session() is None

    def test_set_session_updates_cache_and_disk(self, preference, tmp_path):
        preference.set_session(Session("tok"))

        assert preference.current_session() == Session("tok")
        reopened = PreferenceManager(str(tmp_path / "data" / "session.json"))
        assert reopened.load() == Session("tok")

    def test_clean_removes_session(self, preference, tmp_path):
        preference.set_session(Session("tok"))
        preference.clean()

        assert preference.current_session() is None
        assert PreferenceManager(str(tmp_path / "data" / "session.json")).load() is None

    def test_reads_never_see_torn_values(self, preference):
        sessions = {Session("a" * 64), Session("b" * 64), None}
        stop = threading.Event()
        seen = set()

        def reader():
            while not stop.is_set():
                seen.add(preference.current_session())

        thread = threading.Thread(target=reader)
        thread.start()
        try:
            for _ in range(20):
                preference.set_session(Session("a" * 64))
                preference.clean()
                preference.set_session(Session("b" * 64))
        finally:
            stop.set()
            thread.join()

        assert seen <= sessions

    def test_clean_during_load_is_not_undone(self, preference, tmp_path, monkeypatch):
        preference.set_session(Session("old"))
        reader = PreferenceManager(str(tmp_path / "data" / "session.json"))
        parse = stores._session_from_document

        def parse_then_clean(document):
            session = parse(document)
            # The 401 cleanup lands after the disk read but before the cache update.
            reader.clean()
            return session

        monkeypatch.setattr(stores, "_session_from_document", parse_then_clean)
        reader.load()

        assert reader.current_session() is None
        monkeypatch.undo()
        assert PreferenceManager(str(tmp_path / "data" / "session.json")).load() is None

    def test_login_during_load_is_kept(self, tmp_path, monkeypatch):
        reader = PreferenceManager(str(tmp_path / "data" / "session.json"))
        parse = stores._session_from_document

        def parse_then_login(document):
            session = parse(document)
            reader.set_session(Session("fresh"))
            return session

        monkeypatch.setattr(stores, "_session_from_document", parse_then_login)

        assert reader.load() == Session("fresh")
        assert reader.current_session() == Session("fresh")

    @pytest.mark.asyncio
    async def test_get_session_emits_current_then_changes(self, preference):
        preference.set_session(Session("first"))
        stream = preference.get_session()
        try:
            assert await stream.__anext__() == Session("first")

            await asyncio.to_thread(preference.clean)
            assert await asyncio.wait_for(stream.__anext__(), 5) is None

            await asyncio.to_thread(preference.set_session, Session("second"))
            assert await asyncio.wait_for(stream.__anext__(), 5) == Session("second")
        finally:
            await stream.aclose()

    @pytest.mark.asyncio
    async def test_get_session_loads_from_disk(self, preference, tmp_path):
        preference.set_session(Session("persisted"))
        fresh = PreferenceManager(str(tmp_path / "data" / "session.json"))
        stream = fresh.get_session()
        try:
            assert await stream.__anext__() == Session("persisted")
        finally:
            await stream.aclose()
        assert fresh.loaded
