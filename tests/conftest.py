import asyncio
import dataclasses
import json

import pytest

from ytresolver.config import load_config


class StubSession:
    """Resolver session double. ``script(query, call_no)`` returns an ID, None, or an Exception to raise."""

    def __init__(self, slot_index, script):
        self.slot_index = slot_index
        self.script = script
        self.queries = []
        self.configured = []
        self.closed = False
        self.busy = False

    async def configure(self, *, user_agent, viewport):
        self.configured.append((user_agent, dict(viewport)))

    async def resolve(self, query):
        # a session must never be used by two attempts at once
        assert not self.busy, "session reused concurrently"
        self.busy = True
        try:
            self.queries.append(query)
            await asyncio.sleep(0)
            res = self.script(query, len(self.queries))
            if isinstance(res, BaseException):
                raise res
            return res
        finally:
            self.busy = False

    async def close(self):
        self.closed = True


class StubFactory:
    def __init__(self, script=None, *, fail_on_start=None, fail_on_session=None):
        self.script = script or (lambda q, n: None)
        self.fail_on_start = fail_on_start
        self.fail_on_session = fail_on_session
        self.sessions = []
        self.started = False
        self.stopped = False

    async def start(self):
        if self.fail_on_start:
            raise self.fail_on_start
        self.started = True

    async def new_session(self, slot_index):
        if self.fail_on_session is not None and slot_index == self.fail_on_session:
            raise RuntimeError(f"cannot open slot {slot_index}")
        s = StubSession(slot_index, self.script)
        self.sessions.append(s)
        return s

    async def stop(self):
        self.stopped = True

    @property
    def all_queries(self):
        return [q for s in self.sessions for q in s.queries]


@pytest.fixture
def stub_factory():
    return StubFactory


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(seconds):
        sleeps.append(seconds)
        await asyncio.sleep(0)
    return _sleep


@pytest.fixture
def make_config(tmp_path):
    def _make(**overrides):
        base = dataclasses.replace(
            load_config(),
            input_file=tmp_path / "songs.json",
            output_file=tmp_path / "songs_with_ids.json",
            log_file=tmp_path / "logs" / "resolver.log",
            request_delay_min_ms=0,
            request_delay_max_ms=0,
            max_parallel_pages=2,
            max_retries=2,
            checkpoint_every=10,
        )
        return dataclasses.replace(base, **overrides)
    return _make


@pytest.fixture
def write_songs(tmp_path):
    def _write(songs, path=None, **extra):
        path = path or tmp_path / "songs.json"
        doc = dict(extra)
        doc["songs"] = songs
        path.write_text(json.dumps(doc, indent=2), encoding="utf-8")
        return path
    return _write
