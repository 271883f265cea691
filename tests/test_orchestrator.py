import json

import pytest

from components.orchestrator import BatchOrchestrator, RunState
from components.song_loader import load_songs
from extensions.checkpoint import CheckpointWriter
from extensions.output_paths import write_songs_document


class Crash(BaseException):
    """Stands in for the process dying mid-run (not an attempt-level error)."""


class SyncCheckpointWriter(CheckpointWriter):
    """Writes on the loop thread so a simulated crash cannot race the disk."""

    async def save(self, task_list, *, through_index=None):
        write_songs_document(self.path, task_list.to_document())
        self.saves += 1
        self.last_index = through_index
        return self.path


def _songs(n, **extra):
    return [{"title": f"T{i}", "artist": f"A{i}", **extra} for i in range(n)]


def _read(path):
    return json.loads(path.read_text(encoding="utf-8"))


@pytest.mark.asyncio
async def test_concrete_scenario_resolve_and_skip(make_config, write_songs, stub_factory, fake_sleep):
    write_songs([{"title": "A", "artist": "B"}, {"title": "C", "artist": "D", "youtubeId": "xyz"}])
    cfg = make_config()
    factory = stub_factory(lambda q, n: {"A B official": "id1"}.get(q))

    report = await BatchOrchestrator(cfg, session_factory=factory, sleep=fake_sleep).run()

    assert report.state is RunState.DONE
    out = _read(cfg.output_file)
    assert out["songs"][0]["youtubeId"] == "id1"
    assert out["songs"][1] == {"title": "C", "artist": "D", "youtubeId": "xyz"}
    assert report.stats.resolved == 1
    assert report.stats.skipped == 1
    assert report.stats.failed == 0
    # the pre-resolved song never reached the resolver
    assert factory.all_queries == ["A B official"]
    # pool torn down, checkpoint superseded
    assert factory.stopped and all(s.closed for s in factory.sessions)
    assert not (cfg.output_file.parent / (cfg.output_file.name + ".tmp")).exists()


@pytest.mark.asyncio
async def test_always_null_marks_failed(make_config, write_songs, stub_factory, fake_sleep):
    write_songs([{"title": "A", "artist": "B"}])
    cfg = make_config(max_retries=2)
    factory = stub_factory(lambda q, n: None)

    report = await BatchOrchestrator(cfg, session_factory=factory, sleep=fake_sleep).run()

    song = _read(cfg.output_file)["songs"][0]
    assert song.get("failed") is True
    assert "youtubeId" not in song
    assert report.stats.failed == 1
    assert report.stats.retries_consumed == 2
    assert report.stats.resolved == 0


@pytest.mark.asyncio
async def test_mixed_outcomes_keep_order_and_sum_invariant(make_config, write_songs, stub_factory, fake_sleep):
    songs = _songs(23)
    for i in (4, 9, 17):
        songs[i]["youtubeId"] = f"pre{i:08d}"
    write_songs(songs)

    def script(q, n):
        idx = int(q.split()[0][1:])
        if idx % 5 == 0:
            return None
        if idx % 7 == 0:
            return RuntimeError("timeout")
        return f"v{idx:010d}"

    cfg = make_config(max_parallel_pages=3, max_retries=2)
    factory = stub_factory(script)
    report = await BatchOrchestrator(cfg, session_factory=factory, sleep=fake_sleep).run()

    out = _read(cfg.output_file)["songs"]
    assert [s["title"] for s in out] == [f"T{i}" for i in range(23)]

    s = report.stats
    assert s.resolved + s.failed + s.skipped == 23
    assert s.skipped == 3
    resolved = [x for x in out if "youtubeId" in x and not x["youtubeId"].startswith("pre")]
    failed = [x for x in out if x.get("failed")]
    assert s.resolved == len(resolved)
    assert s.failed == len(failed)
    assert not any("youtubeId" in x and x.get("failed") for x in out)
    # 0,5,10,15,20 (not found) and 7,14,21 (errors) each used both attempts
    assert s.retries_consumed == 2 * len(failed) == 16
    assert out[6]["youtubeId"] == "v0000000006"


@pytest.mark.asyncio
async def test_rerun_on_own_output_is_idempotent(make_config, write_songs, stub_factory, fake_sleep, tmp_path):
    write_songs(_songs(5, year=2001))
    cfg = make_config()
    await BatchOrchestrator(cfg, session_factory=stub_factory(lambda q, n: "x" + q[:10]), sleep=fake_sleep).run()
    first = cfg.output_file.read_bytes()

    second_out = tmp_path / "second.json"
    cfg2 = make_config(input_file=cfg.output_file, output_file=second_out)
    factory = stub_factory(lambda q, n: "should-not-be-used")
    report = await BatchOrchestrator(cfg2, session_factory=factory, sleep=fake_sleep).run()

    assert report.stats.resolved == 0
    assert report.stats.skipped == 5
    assert factory.all_queries == []
    assert second_out.read_bytes() == first


@pytest.mark.asyncio
async def test_checkpoints_cover_settled_prefix(make_config, write_songs, stub_factory, fake_sleep):
    write_songs(_songs(25))
    cfg = make_config(max_parallel_pages=2)
    orch = BatchOrchestrator(cfg, session_factory=stub_factory(lambda q, n: "id" + q.split()[0]), sleep=fake_sleep)

    snapshots = []

    async def record(task_list, *, through_index=None):
        snapshots.append((through_index, task_list.to_document()))

    orch.checkpoint.save = record
    await orch.run()

    assert [k for k, _ in snapshots] == [0, 10, 20]
    for k, doc in snapshots:
        assert len(doc["songs"]) == 25
        assert all("youtubeId" in s or s.get("failed") for s in doc["songs"][: k + 1])


@pytest.mark.asyncio
async def test_crash_leaves_valid_checkpoint_and_resume_finishes(make_config, write_songs, stub_factory, fake_sleep):
    write_songs(_songs(20))
    cfg = make_config(max_parallel_pages=1)

    def crashing(q, n):
        if q.startswith("T15 "):
            raise Crash()
        return "id" + q.split()[0]

    factory = stub_factory(crashing)
    orch = BatchOrchestrator(cfg, session_factory=factory, sleep=fake_sleep)
    orch.checkpoint = SyncCheckpointWriter(orch.checkpoint.path, every=10)

    with pytest.raises(Crash):
        await orch.run()

    assert orch.state is RunState.FAILED
    assert not cfg.output_file.exists()
    assert factory.stopped and all(s.closed for s in factory.sessions)

    cp = load_songs(orch.checkpoint.path)
    assert len(cp) == 20
    assert all(cp[i].resolved_id == f"idT{i}" for i in range(11))
    assert all(not cp[i].is_resolved for i in range(15, 20))

    factory2 = stub_factory(lambda q, n: "id" + q.split()[0])
    report = await BatchOrchestrator(cfg, session_factory=factory2, sleep=fake_sleep, resume=True).run()

    assert report.ok
    assert report.stats.skipped >= 11
    assert report.stats.resolved + report.stats.skipped == 20
    out = _read(cfg.output_file)["songs"]
    assert [s["youtubeId"] for s in out] == [f"idT{i}" for i in range(20)]
    assert not orch.checkpoint.path.exists()


@pytest.mark.asyncio
async def test_missing_input_fails_before_pool(make_config, stub_factory, fake_sleep):
    cfg = make_config()
    factory = stub_factory()
    orch = BatchOrchestrator(cfg, session_factory=factory, sleep=fake_sleep)

    report = await orch.run()

    assert report.state is RunState.FAILED
    assert orch.state is RunState.FAILED
    assert "not found" in report.error
    assert factory.started is False
    assert not cfg.output_file.exists()


@pytest.mark.asyncio
async def test_empty_input_fails(make_config, write_songs, stub_factory, fake_sleep):
    write_songs([])
    cfg = make_config()
    report = await BatchOrchestrator(cfg, session_factory=stub_factory(), sleep=fake_sleep).run()
    assert report.state is RunState.FAILED
    assert report.stats.total_terminal == 0
    assert not cfg.output_file.exists()


@pytest.mark.asyncio
async def test_pool_start_failure_is_reported_and_cleaned_up(make_config, write_songs, stub_factory, fake_sleep):
    write_songs(_songs(3))
    cfg = make_config(max_parallel_pages=3)
    factory = stub_factory(fail_on_session=2)

    report = await BatchOrchestrator(cfg, session_factory=factory, sleep=fake_sleep).run()

    assert report.state is RunState.FAILED
    assert "cannot open slot 2" in report.error
    assert factory.stopped
    assert all(s.closed for s in factory.sessions)
    assert not cfg.output_file.exists()


@pytest.mark.asyncio
async def test_output_write_failure_propagates(make_config, write_songs, stub_factory, fake_sleep, tmp_path):
    write_songs(_songs(2))
    out_dir = tmp_path / "taken"
    out_dir.mkdir()
    cfg = make_config(output_file=out_dir)
    factory = stub_factory(lambda q, n: "id")
    orch = BatchOrchestrator(cfg, session_factory=factory, sleep=fake_sleep)

    with pytest.raises(OSError):
        await orch.run()
    assert orch.state is RunState.FAILED
    assert factory.stopped


@pytest.mark.asyncio
async def test_checkpoint_write_failure_aborts_run(make_config, write_songs, stub_factory, fake_sleep):
    write_songs(_songs(30))
    cfg = make_config()
    factory = stub_factory(lambda q, n: "id")
    orch = BatchOrchestrator(cfg, session_factory=factory, sleep=fake_sleep)

    async def broken(task_list, *, through_index=None):
        raise PermissionError("read-only volume")

    orch.checkpoint.save = broken

    with pytest.raises(PermissionError):
        await orch.run()
    assert orch.state is RunState.FAILED
    assert not cfg.output_file.exists()
    assert factory.stopped
    # slots were stopped early instead of draining the whole list
    assert len(factory.all_queries) < 30


@pytest.mark.asyncio
async def test_previously_failed_song_is_retried(make_config, write_songs, stub_factory, fake_sleep):
    write_songs([{"title": "A", "artist": "B", "failed": True}])
    cfg = make_config()
    report = await BatchOrchestrator(cfg, session_factory=stub_factory(lambda q, n: "idA"), sleep=fake_sleep).run()

    song = _read(cfg.output_file)["songs"][0]
    assert song == {"title": "A", "artist": "B", "youtubeId": "idA"}
    assert report.stats.resolved == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("existing", [12345, "   ", ["abc"]])
async def test_any_truthy_existing_id_is_skipped_and_kept(make_config, write_songs, stub_factory, fake_sleep, existing):
    row = {"title": "A", "artist": "B", "youtubeId": existing}
    write_songs([row, {"title": "C", "artist": "D"}])
    cfg = make_config()
    factory = stub_factory(lambda q, n: None)

    report = await BatchOrchestrator(cfg, session_factory=factory, sleep=fake_sleep).run()

    out = _read(cfg.output_file)["songs"]
    assert out[0] == row
    assert out[1] == {"title": "C", "artist": "D", "failed": True}
    assert "A B official" not in factory.all_queries
    assert report.stats.skipped == 1
    assert report.stats.failed == 1
    assert report.stats.retries_consumed == 2


@pytest.mark.asyncio
async def test_skipped_song_keeps_every_input_field(make_config, write_songs, stub_factory, fake_sleep):
    row = {"title": "A", "artist": "B", "youtubeId": "xyz", "failed": True, "tag": ["x"]}
    write_songs([row])
    cfg = make_config()
    factory = stub_factory(lambda q, n: "other")

    report = await BatchOrchestrator(cfg, session_factory=factory, sleep=fake_sleep).run()

    assert _read(cfg.output_file)["songs"] == [row]
    assert factory.all_queries == []
    assert report.stats.skipped == 1
