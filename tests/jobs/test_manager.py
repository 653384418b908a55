import asyncio
import json
import sqlite3
from unittest.mock import patch

import pytest

from studio_shot.inference import NoImageReturnedError
from studio_shot.jobs import (
    InsufficientCreditsError,
    JobNotFoundError,
    JobStateError,
    JobStatus,
    MissingOriginalError,
    NotReadyError,
    UploadedFile,
)
from studio_shot.jobs.manager import MISSING_ORIGINAL
from studio_shot.jobs.metadata import SNAPSHOT_KEY
from studio_shot.jobs.models import processed_key
from tests.conftest import FakeTransform


def upload(name="shoe.png", data=b"original-bytes", media_type="image/png"):
    return UploadedFile(name=name, data=data, media_type=media_type)


def read_snapshot(db_path):
    with sqlite3.connect(db_path) as conn:
        row = conn.execute("SELECT value FROM documents WHERE key=?", (SNAPSHOT_KEY,)).fetchone()
    return json.loads(row[0])["images"] if row else None


def test_intake_adds_pending_jobs(make_studio):
    studio = make_studio()

    async def scenario():
        async with studio:
            result = await studio.manager.intake([upload("a.png"), upload("b.jpg", media_type="image/jpeg")])
            stored = await studio.blobs.get(result.jobs[0].id)
            return result, stored, studio.manager.jobs

    result, stored, jobs = asyncio.run(scenario())
    assert [j.original_name for j in result.jobs] == ["a.png", "b.jpg"]
    assert result.failures == []
    assert all(j.status == JobStatus.PENDING for j in jobs)
    assert len({j.id for j in jobs}) == 2
    assert stored.data == b"original-bytes"
    assert all(j.original_handle is not None for j in jobs)


def test_process_all_spends_one_credit_per_success(make_studio):
    studio = make_studio(credits=5)

    async def scenario():
        async with studio:
            await studio.manager.intake([upload(f"{i}.png") for i in range(3)])
            finished = await studio.manager.process_all()
            blobs = [
                (await studio.blobs.get(j.id), await studio.blobs.get(processed_key(j.id)))
                for j in finished
            ]
            return finished, blobs, studio.credits.balance

    finished, blobs, balance = asyncio.run(scenario())
    assert balance == 2
    assert [j.status for j in finished] == [JobStatus.DONE] * 3
    assert all(j.processed_handle is not None for j in finished)
    assert finished[0].processed_name == "studio_0.png"
    for original, processed in blobs:
        assert original is not None
        assert processed.data == b"studio-bytes"


def test_failed_transformation_does_not_spend_credit(make_studio):
    transform = FakeTransform(script=[b"ok", NoImageReturnedError("too blurry"), b"ok"])
    studio = make_studio(transform=transform, credits=5)

    async def scenario():
        async with studio:
            await studio.manager.intake([upload(f"{i}.png") for i in range(3)])
            finished = await studio.manager.process_all()
            return finished, studio.credits.balance, studio.credits.reserved

    finished, balance, reserved = asyncio.run(scenario())
    assert balance == 3
    assert reserved == 0
    errored = [j for j in finished if j.status == JobStatus.ERROR]
    assert len(errored) == 1
    assert "too blurry" in errored[0].error
    assert errored[0].processed_handle is None


def test_process_all_refused_when_credits_fall_short(make_studio):
    transform = FakeTransform()
    studio = make_studio(transform=transform, credits=1)

    async def scenario():
        async with studio:
            await studio.manager.intake([upload("a.png"), upload("b.png")])
            with pytest.raises(InsufficientCreditsError) as excinfo:
                await studio.manager.process_all()
            return excinfo.value, studio.manager.jobs, studio.credits.balance

    error, jobs, balance = asyncio.run(scenario())
    assert error.required == 2
    assert error.available == 1
    assert "You need 2 credits but only have 1." in str(error)
    assert [j.status for j in jobs] == [JobStatus.PENDING, JobStatus.PENDING]
    assert balance == 1
    assert transform.calls == []


def test_process_refused_at_zero_credits(make_studio):
    transform = FakeTransform()
    studio = make_studio(transform=transform, credits=0)

    async def scenario():
        async with studio:
            result = await studio.manager.intake([upload()])
            job_id = result.jobs[0].id
            with pytest.raises(InsufficientCreditsError) as excinfo:
                await studio.manager.process(job_id)
            return str(excinfo.value), studio.manager.get(job_id)

    message, job = asyncio.run(scenario())
    assert message == "You have no credits left. Top up to continue."
    assert job.status == JobStatus.PENDING
    assert transform.calls == []


def test_retry_clears_error_while_processing(make_studio):
    transform = FakeTransform(script=[NoImageReturnedError("nope")])
    studio = make_studio(transform=transform)

    async def scenario():
        async with studio:
            manager = studio.manager
            job_id = (await manager.intake([upload()])).jobs[0].id
            failed = await manager.process(job_id)
            assert failed.status == JobStatus.ERROR

            transform.gate = asyncio.Event()
            task = manager.dispatch(job_id)
            in_flight = manager.get(job_id)
            transform.gate.set()
            finished = await task
            return in_flight, finished

    in_flight, finished = asyncio.run(scenario())
    assert in_flight.status == JobStatus.PROCESSING
    assert in_flight.error is None
    assert finished.status == JobStatus.DONE
    assert finished.error is None


def test_processing_job_cannot_be_dispatched_twice(make_studio):
    transform = FakeTransform()
    studio = make_studio(transform=transform)

    async def scenario():
        async with studio:
            manager = studio.manager
            job_id = (await manager.intake([upload()])).jobs[0].id
            transform.gate = asyncio.Event()
            task = manager.dispatch(job_id)
            with pytest.raises(JobStateError):
                manager.dispatch(job_id)
            transform.gate.set()
            await task
            return studio.credits.balance

    assert asyncio.run(scenario()) == 4
    assert len(transform.calls) == 1


def test_done_job_is_not_processed_again(make_studio):
    studio = make_studio()

    async def scenario():
        async with studio:
            manager = studio.manager
            job_id = (await manager.intake([upload()])).jobs[0].id
            await manager.process(job_id)
            with pytest.raises(JobStateError):
                await manager.process(job_id)
            return studio.credits.balance

    assert asyncio.run(scenario()) == 4


def test_empty_original_moves_job_to_error(make_studio):
    transform = FakeTransform()
    studio = make_studio(transform=transform)

    async def scenario():
        async with studio:
            manager = studio.manager
            job_id = (await manager.intake([upload(data=b"")])).jobs[0].id
            with pytest.raises(MissingOriginalError):
                manager.dispatch(job_id)
            return manager.get(job_id), studio.credits.balance, studio.credits.reserved

    job, balance, reserved = asyncio.run(scenario())
    assert job.status == JobStatus.ERROR
    assert job.error == MISSING_ORIGINAL
    assert (balance, reserved) == (5, 0)
    assert transform.calls == []


def test_unknown_job_id(make_studio):
    studio = make_studio()

    async def scenario():
        async with studio:
            with pytest.raises(JobNotFoundError):
                studio.manager.dispatch("does-not-exist")
            with pytest.raises(JobNotFoundError):
                studio.manager.toggle_select("does-not-exist")

    asyncio.run(scenario())


def test_operations_rejected_before_hydrate(make_studio):
    studio = make_studio()

    async def scenario():
        with pytest.raises(NotReadyError):
            await studio.manager.intake([upload()])
        with pytest.raises(NotReadyError):
            studio.manager.dispatch("x")
        with pytest.raises(NotReadyError):
            studio.manager.select_all(True)

    asyncio.run(scenario())
    assert studio.manager.ready is False


def test_concurrent_dispatch_never_overspends(make_studio):
    transform = FakeTransform()
    studio = make_studio(transform=transform, credits=1)

    async def scenario():
        async with studio:
            manager = studio.manager
            ids = [j.id for j in (await manager.intake([upload("a.png"), upload("b.png")])).jobs]
            transform.gate = asyncio.Event()
            first = manager.dispatch(ids[0])
            with pytest.raises(InsufficientCreditsError):
                manager.dispatch(ids[1])
            transform.gate.set()
            await first
            return studio.credits.balance, manager.get(ids[1]).status

    balance, second_status = asyncio.run(scenario())
    assert balance == 0
    assert second_status == JobStatus.PENDING


def test_delete_selected_removes_blobs_and_handles(make_studio):
    studio = make_studio()

    async def scenario():
        async with studio:
            manager = studio.manager
            jobs = (await manager.intake([upload("a.png"), upload("b.png")])).jobs
            await manager.process(jobs[0].id)
            manager.toggle_select(jobs[0].id)
            removed = await manager.delete_selected()
            await manager.flush()
            keys = await studio.blobs.keys()
            return jobs, removed, keys, len(studio.handles), manager.jobs

    jobs, removed, keys, handle_count, remaining = asyncio.run(scenario())
    assert removed == [jobs[0].id]
    assert jobs[0].id not in keys
    assert processed_key(jobs[0].id) not in keys
    assert keys == [jobs[1].id]
    assert handle_count == 1
    assert [j.id for j in remaining] == [jobs[1].id]
    assert [r["id"] for r in read_snapshot(studio.db_path)] == [jobs[1].id]


def test_delete_everything_leaves_empty_snapshot(make_studio):
    studio = make_studio()

    async def scenario():
        async with studio:
            manager = studio.manager
            await manager.intake([upload("a.png"), upload("b.png")])
            manager.select_all(True)
            await manager.delete_selected()
            return await studio.blobs.keys()

    assert asyncio.run(scenario()) == []
    assert read_snapshot(studio.db_path) == []


def test_delete_skips_processing_jobs(make_studio):
    transform = FakeTransform()
    studio = make_studio(transform=transform)

    async def scenario():
        async with studio:
            manager = studio.manager
            jobs = (await manager.intake([upload("a.png"), upload("b.png")])).jobs
            transform.gate = asyncio.Event()
            task = manager.dispatch(jobs[0].id)
            manager.select_all(True)
            removed = await manager.delete_selected()
            transform.gate.set()
            finished = await task
            return jobs, removed, finished

    jobs, removed, finished = asyncio.run(scenario())
    assert removed == [jobs[1].id]
    assert finished.status == JobStatus.DONE


def test_intake_failure_is_isolated_per_file(make_studio):
    studio = make_studio()

    async def scenario():
        async with studio:
            real_put = studio.blobs.put

            async def flaky_put(key, blob):
                if blob.name == "bad.png":
                    raise OSError("disk full")
                await real_put(key, blob)

            with patch.object(studio.blobs, "put", side_effect=flaky_put):
                result = await studio.manager.intake([upload("good.png"), upload("bad.png")])
            return result, studio.manager.jobs

    result, jobs = asyncio.run(scenario())
    assert [j.original_name for j in result.jobs] == ["good.png"]
    assert [(f.name, f.error) for f in result.failures] == [("bad.png", "disk full")]
    assert [j.original_name for j in jobs] == ["good.png"]


def test_selection_is_not_persisted(make_studio):
    studio = make_studio()

    async def scenario():
        async with studio:
            manager = studio.manager
            job_id = (await manager.intake([upload()])).jobs[0].id
            manager.toggle_select(job_id)
            await manager.flush()
            return job_id

    job_id = asyncio.run(scenario())
    records = read_snapshot(studio.db_path)
    assert records[0]["id"] == job_id
    assert "selected" not in records[0]


def test_snapshot_tracks_latest_status(make_studio):
    transform = FakeTransform(script=[NoImageReturnedError("no image here")])
    studio = make_studio(transform=transform)

    async def scenario():
        async with studio:
            manager = studio.manager
            await manager.intake([upload("a.png"), upload("b.png")])
            await manager.process_all()

    asyncio.run(scenario())
    records = {r["originalFileName"]: r for r in read_snapshot(studio.db_path)}
    assert records["a.png"]["status"] == "error"
    assert "no image here" in records["a.png"]["error"]
    assert records["b.png"]["status"] == "done"
    assert records["b.png"]["processedFileName"] == "studio_b.png"


def test_counts_and_processable(make_studio):
    transform = FakeTransform(script=[b"ok", RuntimeError("boom")])
    studio = make_studio(transform=transform)

    async def scenario():
        async with studio:
            manager = studio.manager
            await manager.intake([upload("a.png"), upload("b.png"), upload("c.png")])
            jobs = manager.jobs
            await manager.process(jobs[0].id)
            await manager.process(jobs[1].id)
            return manager.counts(), manager.processable_count

    counts, processable = asyncio.run(scenario())
    assert counts == {"pending": 1, "processing": 0, "done": 1, "error": 1}
    assert processable == 2


def test_top_up_reopens_the_gate(make_studio):
    studio = make_studio(credits=0)

    async def scenario():
        async with studio:
            manager = studio.manager
            job_id = (await manager.intake([upload()])).jobs[0].id
            manager.top_up(3)
            job = await manager.process(job_id)
            return job, studio.credits.balance

    job, balance = asyncio.run(scenario())
    assert job.status == JobStatus.DONE
    assert balance == 2


def test_close_releases_every_handle(make_studio):
    studio = make_studio()

    async def scenario():
        async with studio:
            await studio.manager.intake([upload("a.png"), upload("b.png")])
            await studio.manager.process_all()
            assert len(studio.handles) == 4

    asyncio.run(scenario())
    assert len(studio.handles) == 0


def test_session_components_are_shared_with_the_manager(make_studio):
    studio = make_studio()
    assert studio.manager.handles is studio.handles
    assert studio.manager.credits is studio.credits
    assert studio.manager.progress is studio.progress_tracker

    async def scenario():
        async with studio:
            job = (await studio.manager.intake([upload()])).jobs[0]
            return job, len(studio.handles), studio.handles.resolve(job.original_handle.token)

    job, handle_count, content = asyncio.run(scenario())
    assert handle_count == 1
    assert content == (b"original-bytes", "image/png")


def test_intake_rejects_non_image_types(make_studio):
    studio = make_studio()

    async def scenario():
        async with studio:
            result = await studio.manager.intake(
                [
                    upload("page.html", b"<script>alert(1)</script>", "text/html"),
                    upload("photo.webp", media_type="image/WEBP"),
                ]
            )
            return result, await studio.blobs.keys()

    result, keys = asyncio.run(scenario())
    assert [j.original_name for j in result.jobs] == ["photo.webp"]
    assert result.jobs[0].media_type == "image/webp"
    assert [f.name for f in result.failures] == ["page.html"]
    assert "text/html" in result.failures[0].error
    assert keys == [result.jobs[0].id]


def test_intake_keeps_only_the_file_name(make_studio):
    studio = make_studio()

    async def scenario():
        async with studio:
            result = await studio.manager.intake([upload("../../etc/shoe.png"), upload("C:\\photos\\hat.png")])
            return [j.original_name for j in result.jobs]

    assert asyncio.run(scenario()) == ["shoe.png", "hat.png"]


def test_set_selected_is_idempotent(make_studio):
    studio = make_studio()

    async def scenario():
        async with studio:
            manager = studio.manager
            job_id = (await manager.intake([upload()])).jobs[0].id
            manager.set_selected(job_id)
            manager.set_selected(job_id)
            selected = manager.get(job_id).selected
            manager.set_selected(job_id, False)
            with pytest.raises(JobNotFoundError):
                manager.set_selected("nope")
            return selected, manager.get(job_id).selected

    assert asyncio.run(scenario()) == (True, False)
