"""
Tests for sample and full generation.
"""

import asyncio
import uuid
from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from dreamboat_api.errors import (
    CreditAlreadyRedeemed,
    CreditNotAvailable,
    CreditNotFound,
    ExternalServiceTimeout,
    GenerationInProgress,
    InvalidSelection,
    PhotosNotReady,
)
from dreamboat_api.models import CreditStatus, GenerationBatch, JobStatus, PurchaseCredit, SampleJob
from dreamboat_api.services import (
    CreditGate,
    CurationEngine,
    GenerationService,
    PhotoLifecycleManager,
)
from dreamboat_api.services.generation import TIMEOUT_MESSAGE, photo_set_fingerprint

from .fakes import OTHER_OWNER, OWNER, SIX_SCENARIOS, add_credit, add_photo, add_validated_photos


def worker_images(batch, scenarios, per_scenario=2):
    return [
        {"scenario": s, "storage_key": f"users/{batch.owner_id}/batches/{batch.id}/{s}_{n}.jpg"}
        for s in scenarios
        for n in range(per_scenario)
    ]


def build_generation(session, storage, validation_engine, verifier, queue, settings):
    photos = PhotoLifecycleManager(session, storage, validation_engine, settings)
    return GenerationService(
        session,
        photos,
        CreditGate(session, verifier),
        queue,
        CurationEngine(session, settings.max_profile_photos),
        settings,
    )


class TestFingerprint:
    def test_order_independent(self):
        a, b = uuid.uuid4(), uuid.uuid4()
        assert photo_set_fingerprint([a, b]) == photo_set_fingerprint([b, a])

    def test_differs_per_set(self):
        a, b = uuid.uuid4(), uuid.uuid4()
        assert photo_set_fingerprint([a]) != photo_set_fingerprint([a, b])


class TestSamples:
    async def test_starts_when_last_photo_validates(self, photos, storage, generation, queue):
        uploaded = [await add_photo(photos, storage, name=f"{i}.jpg") for i in range(5)]
        for photo in uploaded[:4]:
            await photos.validate(OWNER, photo.id)
            assert not await generation.maybe_start_sample(OWNER)

        await photos.validate(OWNER, uploaded[4].id)

        assert await generation.maybe_start_sample(OWNER)
        assert len(queue.samples) == 1
        assert len(queue.samples[0]["photo_keys"]) == 5

    async def test_same_photo_set_is_idempotent(self, photos, storage, generation, queue):
        await add_validated_photos(photos, storage, 2)

        first, created = await generation.start_sample(OWNER)
        second, created_again = await generation.start_sample(OWNER)

        assert created
        assert not created_again
        assert first.id == second.id
        assert len(queue.samples) == 1

    async def test_new_photo_set_supersedes(self, photos, storage, generation, db):
        await add_validated_photos(photos, storage, 1)
        old, _ = await generation.start_sample(OWNER)

        extra = await add_photo(photos, storage, name="extra.jpg")
        await photos.validate(OWNER, extra.id)
        new, created = await generation.start_sample(OWNER)

        assert created
        assert new.id != old.id
        await db.refresh(old)
        assert not old.is_current
        assert new.is_current

    async def test_requires_ready_photos(self, photos, storage, generation):
        await add_photo(photos, storage)
        with pytest.raises(PhotosNotReady):
            await generation.start_sample(OWNER)

    async def test_queue_failure_marks_job_failed(self, photos, storage, generation, queue):
        await add_validated_photos(photos, storage, 1)
        queue.accept = False

        assert not await generation.maybe_start_sample(OWNER)
        failed = (await generation.poll_sample(OWNER)).job
        assert failed.status == JobStatus.FAILED.value

        queue.accept = True
        assert await generation.maybe_start_sample(OWNER)

    async def test_poll_hides_previews_until_done(self, photos, storage, generation):
        await add_validated_photos(photos, storage, 1)
        job, _ = await generation.start_sample(OWNER)

        await generation.mark_sample_running(job.id)
        await generation.add_sample_previews(
            job.id, [{"scenario": "photoshoot", "storage_key": f"samples/{job.id}/photoshoot_0.jpg"}]
        )
        running = await generation.poll_sample(OWNER)
        assert running.status == JobStatus.RUNNING.value
        assert not running.done
        assert running.previews == []

        await generation.finish_sample(job.id)
        done = await generation.poll_sample(OWNER)
        assert done.done
        assert done.status == JobStatus.COMPLETED.value
        assert [p.scenario for p in done.previews] == ["photoshoot"]

    async def test_duplicate_previews_are_skipped(self, photos, storage, generation):
        await add_validated_photos(photos, storage, 1)
        job, _ = await generation.start_sample(OWNER)
        items = [{"scenario": "rooftop", "storage_key": "samples/x/rooftop_0.jpg"}]

        assert await generation.add_sample_previews(job.id, items) == 1
        assert await generation.add_sample_previews(job.id, items) == 0

    async def test_stale_sample_times_out(self, photos, storage, generation, db, settings):
        await add_validated_photos(photos, storage, 1)
        job, _ = await generation.start_sample(OWNER)
        job.created_at = datetime.utcnow() - timedelta(seconds=settings.generation_timeout_seconds + 1)
        await db.commit()

        status = await generation.poll_sample(OWNER)

        assert status.done
        assert status.status == JobStatus.FAILED.value
        assert status.job.error_message == TIMEOUT_MESSAGE

    async def test_no_sample_yet(self, generation):
        status = await generation.poll_sample(OWNER)
        assert status.job is None
        assert not status.done


class TestStartFull:
    async def test_requires_six_distinct_known_scenarios(self, generation):
        with pytest.raises(InvalidSelection):
            await generation.start_full(OWNER, SIX_SCENARIOS[:5])
        with pytest.raises(InvalidSelection):
            await generation.start_full(OWNER, SIX_SCENARIOS[:5] + SIX_SCENARIOS[:1])
        with pytest.raises(InvalidSelection):
            await generation.start_full(OWNER, SIX_SCENARIOS[:5] + ["moon_landing"])

    async def test_requires_ready_photos(self, photos, storage, credits, generation):
        await add_credit(credits)
        await add_photo(photos, storage)
        with pytest.raises(PhotosNotReady):
            await generation.start_full(OWNER, SIX_SCENARIOS)

    async def test_requires_credit(self, photos, storage, generation):
        await add_validated_photos(photos, storage, 1)
        with pytest.raises(CreditNotAvailable):
            await generation.start_full(OWNER, SIX_SCENARIOS)

    async def test_spends_credit_and_queues(self, photos, storage, credits, generation, queue, settings):
        await add_validated_photos(photos, storage, 3)
        credit = await add_credit(credits)

        batch = await generation.start_full(OWNER, SIX_SCENARIOS)

        assert batch.status == JobStatus.QUEUED.value
        assert batch.credit_id == credit.id
        assert batch.expected_images == 6 * settings.images_per_scenario
        assert not (await credits.check_access(OWNER)).has_unredeemed_credit
        assert queue.batches[0]["scenarios"] == SIX_SCENARIOS
        assert len(queue.batches[0]["photo_keys"]) == 3
        assert (await generation.generation_status(OWNER)).id == batch.id

    async def test_one_batch_in_flight(self, photos, storage, credits, generation, db):
        await add_validated_photos(photos, storage, 1)
        await add_credit(credits, txn="t1")
        spare = await add_credit(credits, txn="t2")
        await generation.start_full(OWNER, SIX_SCENARIOS)

        with pytest.raises(GenerationInProgress):
            await generation.start_full(OWNER, SIX_SCENARIOS)

        await db.refresh(spare)
        assert spare.status == CreditStatus.UNREDEEMED.value
        assert await db.scalar(select(func.count(GenerationBatch.id))) == 1

    async def test_concurrent_starts_create_one_batch(
        self, session_factory, storage, validation_engine, verifier, queue, settings
    ):
        async with session_factory() as session:
            setup = build_generation(session, storage, validation_engine, verifier, queue, settings)
            await add_validated_photos(setup.photos, storage, 1)
            await add_credit(setup.credits, txn="t1")
            await add_credit(setup.credits, txn="t2")

        checked = asyncio.Event()
        release = asyncio.Event()

        async with session_factory() as first, session_factory() as second:
            winner = build_generation(first, storage, validation_engine, verifier, queue, settings)
            loser = build_generation(second, storage, validation_engine, verifier, queue, settings)
            in_flight_batch = loser._in_flight_batch

            async def held_in_flight_check(owner_id):
                batch = await in_flight_batch(owner_id)
                checked.set()
                await release.wait()
                return batch

            loser._in_flight_batch = held_in_flight_check
            task = asyncio.create_task(loser.start_full(OWNER, SIX_SCENARIOS))
            await checked.wait()

            batch = await winner.start_full(OWNER, SIX_SCENARIOS)
            release.set()
            with pytest.raises(GenerationInProgress):
                await task
            await second.rollback()

        async with session_factory() as session:
            batch_ids = (await session.execute(select(GenerationBatch.id))).scalars().all()
            statuses = (await session.execute(select(PurchaseCredit.status))).scalars().all()

        assert batch_ids == [batch.id]
        assert sorted(statuses) == sorted(
            [CreditStatus.REDEEMED.value, CreditStatus.UNREDEEMED.value]
        )
        assert len(queue.batches) == 1

    async def test_unknown_credit_is_not_found(
        self, strict_session_factory, storage, validation_engine, verifier, queue, settings
    ):
        async with strict_session_factory() as session:
            generation = build_generation(session, storage, validation_engine, verifier, queue, settings)
            await add_validated_photos(generation.photos, storage, 1)

            with pytest.raises(CreditNotFound):
                await generation.start_full(OWNER, SIX_SCENARIOS, credit_id=uuid.uuid4())

            assert await session.scalar(select(func.count(GenerationBatch.id))) == 0
        assert queue.batches == []

    async def test_other_owners_credit_is_not_found(self, photos, storage, credits, generation, db):
        await add_validated_photos(photos, storage, 1)
        foreign = await add_credit(credits, owner=OTHER_OWNER)

        with pytest.raises(CreditNotFound):
            await generation.start_full(OWNER, SIX_SCENARIOS, credit_id=foreign.id)

        await db.refresh(foreign)
        assert foreign.status == CreditStatus.UNREDEEMED.value
        assert await db.scalar(select(func.count(GenerationBatch.id))) == 0

    async def test_spent_credit_cannot_start_again(self, photos, storage, credits, generation, db):
        await add_validated_photos(photos, storage, 1)
        credit = await add_credit(credits)
        batch = await generation.start_full(OWNER, SIX_SCENARIOS)
        await generation.add_batch_images(batch.id, worker_images(batch, SIX_SCENARIOS))
        await generation.finish_batch(batch.id)
        await db.commit()

        with pytest.raises(CreditAlreadyRedeemed):
            await generation.start_full(OWNER, SIX_SCENARIOS, credit_id=credit.id)
        assert await db.scalar(select(func.count(GenerationBatch.id))) == 1

    async def test_queue_failure_restores_credit(self, photos, storage, credits, generation, queue, db):
        await add_validated_photos(photos, storage, 1)
        credit = await add_credit(credits)
        queue.accept = False

        with pytest.raises(ExternalServiceTimeout):
            await generation.start_full(OWNER, SIX_SCENARIOS)

        batch = (await db.execute(select(GenerationBatch))).scalar_one()
        assert batch.status == JobStatus.FAILED.value
        assert batch.in_flight_owner_id is None
        assert batch.credit_restored
        assert (await credits.check_access(OWNER)).credit_id == credit.id
        assert await generation.generation_status(OWNER) is None


class TestFinishBatch:
    async def _start(self, photos, storage, credits, generation):
        await add_validated_photos(photos, storage, 1)
        await add_credit(credits)
        batch = await generation.start_full(OWNER, SIX_SCENARIOS)
        await generation.mark_batch_running(batch.id)
        return batch

    async def test_complete_batch_is_curated(self, photos, storage, credits, generation, curation):
        batch = await self._start(photos, storage, credits, generation)
        assert await generation.add_batch_images(batch.id, worker_images(batch, SIX_SCENARIOS)) == 12

        finished = await generation.finish_batch(batch.id)

        assert finished.status == JobStatus.COMPLETED.value
        assert not finished.is_partial
        assert finished.in_flight_owner_id is None
        assert len(await curation.selected(OWNER)) == 6

        status = await generation.poll_full(OWNER, batch.id)
        assert status.done
        assert len(status.images) == 12

    async def test_partial_batch_keeps_credit_spent(self, photos, storage, credits, generation, curation):
        batch = await self._start(photos, storage, credits, generation)
        await generation.add_batch_images(batch.id, worker_images(batch, SIX_SCENARIOS[:2]))

        finished = await generation.finish_batch(batch.id, ["nature: blocked", "rooftop: blocked"])

        assert finished.status == JobStatus.COMPLETED.value
        assert finished.is_partial
        assert not finished.credit_restored
        assert not (await credits.check_access(OWNER)).has_unredeemed_credit
        selected = await curation.selected(OWNER)
        assert 0 < len(selected) <= 4

    async def test_no_images_fails_and_restores_credit(self, photos, storage, credits, generation, db):
        batch = await self._start(photos, storage, credits, generation)

        finished = await generation.finish_batch(batch.id, ["model unavailable"])
        await db.commit()

        assert finished.status == JobStatus.FAILED.value
        assert finished.credit_restored
        assert finished.error_message == "model unavailable"
        assert (await credits.check_access(OWNER)).has_unredeemed_credit

        retry = await generation.start_full(OWNER, SIX_SCENARIOS)
        assert retry.id != batch.id

    async def test_finish_twice_is_noop(self, photos, storage, credits, generation):
        batch = await self._start(photos, storage, credits, generation)
        await generation.finish_batch(batch.id)
        again = await generation.finish_batch(batch.id)

        assert again.status == JobStatus.FAILED.value
        assert (await credits.check_access(OWNER)).has_unredeemed_credit

    async def test_late_images_are_ignored(self, photos, storage, credits, generation):
        batch = await self._start(photos, storage, credits, generation)
        await generation.add_batch_images(batch.id, worker_images(batch, SIX_SCENARIOS[:1]))
        await generation.finish_batch(batch.id)

        late = await generation.add_batch_images(batch.id, worker_images(batch, SIX_SCENARIOS[1:2]))

        assert late == 0
        assert len((await generation.poll_full(OWNER, batch.id)).images) == 2

    async def test_resent_images_are_skipped(self, photos, storage, credits, generation):
        batch = await self._start(photos, storage, credits, generation)
        items = worker_images(batch, SIX_SCENARIOS[:1])
        assert await generation.add_batch_images(batch.id, items) == 2
        assert await generation.add_batch_images(batch.id, items) == 0

    async def test_stale_batch_times_out(self, photos, storage, credits, generation, db, settings):
        batch = await self._start(photos, storage, credits, generation)
        batch.created_at = datetime.utcnow() - timedelta(seconds=settings.generation_timeout_seconds + 1)
        await db.commit()

        status = await generation.poll_full(OWNER, batch.id)

        assert status.done
        assert status.batch.status == JobStatus.FAILED.value
        assert status.batch.error_message == TIMEOUT_MESSAGE
        assert (await credits.check_access(OWNER)).has_unredeemed_credit

    async def test_images_hidden_while_running(self, photos, storage, credits, generation):
        batch = await self._start(photos, storage, credits, generation)
        await generation.add_batch_images(batch.id, worker_images(batch, SIX_SCENARIOS[:1]))

        status = await generation.poll_full(OWNER, batch.id)

        assert not status.done
        assert status.images == []
        assert status.batch.status == JobStatus.RUNNING.value


async def test_sample_job_is_separate_from_batches(photos, storage, credits, generation, db):
    await add_validated_photos(photos, storage, 1)
    await generation.start_sample(OWNER)
    await add_credit(credits)

    await generation.start_full(OWNER, SIX_SCENARIOS)

    assert await db.scalar(select(func.count(SampleJob.id))) == 1
    assert await db.scalar(select(func.count(GenerationBatch.id))) == 1
