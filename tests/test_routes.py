"""
End-to-end tests through the HTTP API.
"""

import uuid

import pytest

from .fakes import OTHER_OWNER, SIX_SCENARIOS, make_token

WORKER = {"X-Worker-Token": "worker-secret"}


async def upload(client, storage, name="me.jpg", replaces=None):
    slot = await client.post(
        "/api/photos/upload-slots",
        json={
            "file_name": name,
            "content_type": "image/jpeg",
            "size_bytes": 2048,
            "replaces_photo_id": str(replaces) if replaces else None,
        },
    )
    assert slot.status_code == 201, slot.text
    key = slot.json()["storage_key"]
    storage.objects[key] = b"jpeg"
    if replaces:
        return key

    response = await client.post("/api/photos", json={"storage_key": key})
    assert response.status_code == 201, response.text
    return response.json()


async def ready_photos(client, storage, count=1):
    photos = [await upload(client, storage, f"{i}.jpg") for i in range(count)]
    for photo in photos:
        response = await client.post(f"/api/photos/{photo['id']}/validate")
        assert response.status_code == 200, response.text
    return photos


async def buy(client, txn="txn-1"):
    response = await client.post(
        "/api/payments/iap/validate",
        json={"platform": "ios", "receipt": "receipt", "transaction_id": txn, "product_id": "gen_pack"},
    )
    assert response.status_code == 200, response.text
    return response.json()["payment_id"]


class TestAuth:
    async def test_missing_token(self, client):
        response = await client.get("/api/photos", headers={"Authorization": ""})
        assert response.status_code == 401

    async def test_bad_signature(self, client):
        response = await client.get(
            "/api/photos", headers={"Authorization": f"Bearer {make_token(key='wrong')}"}
        )
        assert response.status_code == 401

    async def test_worker_routes_need_worker_token(self, client):
        response = await client.post(f"/api/internal/batches/{uuid.uuid4()}/start")
        assert response.status_code == 403


class TestPhotoRoutes:
    async def test_upload_and_list(self, client, storage):
        photo = await upload(client, storage)

        response = await client.get("/api/photos")

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["max_photos"] == 10
        assert not body["can_proceed"]
        assert body["photos"][0]["id"] == photo["id"]
        assert body["photos"][0]["validation_status"] == "pending"
        assert body["photos"][0]["url"].startswith("https://storage.test/")

    async def test_quota_error_body(self, client, storage):
        for i in range(10):
            await upload(client, storage, f"{i}.jpg")

        response = await client.post(
            "/api/photos/upload-slots", json={"file_name": "x.jpg", "content_type": "image/jpeg"}
        )

        assert response.status_code == 409
        assert response.json()["error"] == "quota_exceeded"

    async def test_failed_photo_blocks_until_bypass(self, client, storage, validation_engine):
        photo = await upload(client, storage)
        validation_engine.reject(
            next(iter(storage.objects)), "multiple_subjects"
        )

        verdict = await client.post(f"/api/photos/{photo['id']}/validate")
        assert verdict.json()["is_valid"] is False
        assert verdict.json()["warnings"] == ["multiple_subjects"]
        assert verdict.json()["sample_generation_started"] is False

        readiness = await client.get("/api/photos/readiness")
        assert readiness.json()["counts"]["failed"] == 1
        assert not readiness.json()["can_proceed"]

        bypass = await client.post(f"/api/photos/{photo['id']}/bypass")
        assert bypass.status_code == 200
        assert bypass.json()["photo"]["validation_status"] == "bypassed"
        assert bypass.json()["sample_generation_started"] is True

    async def test_bypass_valid_photo_is_conflict(self, client, storage):
        (photo,) = await ready_photos(client, storage)
        response = await client.post(f"/api/photos/{photo['id']}/bypass")
        assert response.status_code == 409
        assert response.json()["error"] == "invalid_state_transition"

    async def test_replace(self, client, storage, validation_engine):
        photo = await upload(client, storage)
        key = await upload(client, storage, "new.jpg", replaces=photo["id"])

        response = await client.post(f"/api/photos/{photo['id']}/replace", json={"storage_key": key})

        assert response.status_code == 200, response.text
        body = response.json()
        assert body["old_photo_id"] == photo["id"]
        assert body["is_valid"]
        assert body["sample_generation_started"]
        listed = await client.get("/api/photos")
        assert [p["id"] for p in listed.json()["photos"]] == [body["photo"]["id"]]

    async def test_other_owner_sees_nothing(self, client, storage):
        photo = await upload(client, storage)
        other = {"Authorization": f"Bearer {make_token(OTHER_OWNER)}"}

        assert (await client.get("/api/photos", headers=other)).json()["total"] == 0
        response = await client.post(f"/api/photos/{photo['id']}/validate", headers=other)
        assert response.status_code == 404


class TestGenerationFlow:
    async def test_sample_then_paid_batch(self, client, storage, queue):
        photos = [await upload(client, storage, f"{i}.jpg") for i in range(2)]
        first = await client.post(f"/api/photos/{photos[0]['id']}/validate")
        assert first.json()["sample_generation_started"] is False
        second = await client.post(f"/api/photos/{photos[1]['id']}/validate")
        assert second.json()["sample_generation_started"] is True

        status = (await client.get("/api/samples/status")).json()
        assert status["status"] == "queued"
        assert not status["done"]

        job_id = queue.samples[0]["id"]
        await client.post(f"/api/internal/samples/{job_id}/start", headers=WORKER)
        await client.post(
            f"/api/internal/samples/{job_id}/images",
            headers=WORKER,
            json={"images": [{"scenario": "photoshoot", "storage_key": f"s/{job_id}/photoshoot_0.jpg"}]},
        )
        await client.post(f"/api/internal/samples/{job_id}/finish", headers=WORKER, json={"errors": []})

        samples = (await client.get("/api/samples")).json()
        assert samples["done"]
        assert [p["scenario"] for p in samples["previews"]] == ["photoshoot"]

        assert (await client.get("/api/payments/access")).json()["has_access"] is False
        unpaid = await client.post("/api/generations", json={"scenarios": SIX_SCENARIOS})
        assert unpaid.status_code == 402

        payment_id = await buy(client)
        assert await buy(client) == payment_id
        assert (await client.get("/api/payments/access")).json() == {
            "has_access": True,
            "payment_id": payment_id,
        }

        started = await client.post("/api/generations", json={"scenarios": SIX_SCENARIOS})
        assert started.status_code == 202, started.text
        batch_id = started.json()["id"]
        assert (await client.get("/api/payments/access")).json()["has_access"] is False

        again = await client.post("/api/generations", json={"scenarios": SIX_SCENARIOS})
        assert again.status_code == 409
        assert again.json()["detail"] == "You may already have started a generation"

        in_flight = (await client.get("/api/generations/status")).json()
        assert in_flight == {"is_generating": True, "batch_id": batch_id}

        await client.post(f"/api/internal/batches/{batch_id}/start", headers=WORKER)
        for scenario in SIX_SCENARIOS[:2]:
            ack = await client.post(
                f"/api/internal/batches/{batch_id}/images",
                headers=WORKER,
                json={"images": [
                    {"scenario": scenario, "storage_key": f"b/{batch_id}/{scenario}_{n}.jpg"}
                    for n in range(2)
                ]},
            )
            assert ack.json()["created_count"] == 2
        finish = await client.post(
            f"/api/internal/batches/{batch_id}/finish",
            headers=WORKER,
            json={"errors": ["rooftop: blocked"]},
        )
        assert finish.json()["status"] == "completed"

        polled = (await client.get(f"/api/generations/{batch_id}")).json()
        assert polled["done"]
        assert polled["batch"]["is_partial"]
        assert len(polled["images"]) == 4

        profile = (await client.get("/api/profile/photos")).json()["photos"]
        assert 1 <= len(profile) <= 4
        assert [p["selected_profile_order"] for p in profile] == list(range(1, len(profile) + 1))

        history = (await client.get("/api/payments/history")).json()["payments"]
        assert history[0]["status"] == "redeemed"
        assert history[0]["batch_id"] == batch_id

    async def test_failed_batch_restores_access(self, client, storage, queue):
        await ready_photos(client, storage)
        await buy(client)
        batch_id = (await client.post("/api/generations", json={"scenarios": SIX_SCENARIOS})).json()["id"]

        finish = await client.post(
            f"/api/internal/batches/{batch_id}/finish", headers=WORKER, json={"errors": ["boom"]}
        )

        assert finish.json()["status"] == "failed"
        assert (await client.get("/api/payments/access")).json()["has_access"] is True
        polled = (await client.get(f"/api/generations/{batch_id}")).json()
        assert polled["batch"]["credit_restored"]
        assert polled["images"] == []

    async def test_queue_outage_is_503(self, client, storage, queue):
        await ready_photos(client, storage)
        await buy(client)
        queue.accept = False

        response = await client.post("/api/generations", json={"scenarios": SIX_SCENARIOS})

        assert response.status_code == 503
        assert (await client.get("/api/payments/access")).json()["has_access"] is True

    async def test_wrong_scenario_count(self, client, storage):
        await ready_photos(client, storage)
        await buy(client)
        response = await client.post("/api/generations", json={"scenarios": SIX_SCENARIOS[:3]})
        assert response.status_code == 422
        assert response.json()["error"] == "invalid_selection"

    async def test_other_owner_cannot_poll_batch(self, client, storage):
        await ready_photos(client, storage)
        await buy(client)
        batch_id = (await client.post("/api/generations", json={"scenarios": SIX_SCENARIOS})).json()["id"]

        response = await client.get(
            f"/api/generations/{batch_id}",
            headers={"Authorization": f"Bearer {make_token(OTHER_OWNER)}"},
        )
        assert response.status_code == 404


class TestProfileRoutes:
    async def _completed_batch(self, client, storage):
        await ready_photos(client, storage)
        await buy(client)
        batch_id = (await client.post("/api/generations", json={"scenarios": SIX_SCENARIOS})).json()["id"]
        await client.post(
            f"/api/internal/batches/{batch_id}/images",
            headers=WORKER,
            json={"images": [
                {"scenario": s, "storage_key": f"b/{batch_id}/{s}_{n}.jpg"}
                for s in SIX_SCENARIOS
                for n in range(2)
            ]},
        )
        await client.post(f"/api/internal/batches/{batch_id}/finish", headers=WORKER, json={})
        return batch_id

    async def test_auto_selected_then_replaced(self, client, storage):
        await self._completed_batch(client, storage)
        images = (await client.get("/api/generated-images")).json()
        assert images["total"] == 12

        profile = (await client.get("/api/profile/photos")).json()["photos"]
        assert [p["scenario"] for p in profile] == SIX_SCENARIOS

        unselected = [i for i in images["images"] if i["selected_profile_order"] is None]
        response = await client.put(
            "/api/profile/photos",
            json={"selections": [{"image_id": unselected[0]["id"], "order": 1}]},
        )
        assert response.status_code == 200
        assert [p["id"] for p in response.json()["photos"]] == [unselected[0]["id"]]

    async def test_toggle(self, client, storage):
        await self._completed_batch(client, storage)
        profile = (await client.get("/api/profile/photos")).json()["photos"]

        response = await client.post(
            "/api/profile/photos/toggle", json={"image_id": profile[0]["id"], "order": None}
        )

        assert len(response.json()["photos"]) == 5

    async def test_invalid_selection(self, client, storage):
        await self._completed_batch(client, storage)
        profile = (await client.get("/api/profile/photos")).json()["photos"]

        response = await client.put(
            "/api/profile/photos",
            json={"selections": [
                {"image_id": profile[0]["id"], "order": 1},
                {"image_id": profile[1]["id"], "order": 1},
            ]},
        )
        assert response.status_code == 422


class TestPaymentRoutes:
    async def test_rejected_receipt(self, client, verifier):
        verifier.rejected_receipts.add("forged")
        response = await client.post(
            "/api/payments/iap/validate",
            json={"platform": "android", "receipt": "forged", "transaction_id": "gpa.1"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_purchase"

    async def test_restore(self, client):
        response = await client.post(
            "/api/payments/iap/restore",
            json={
                "platform": "ios",
                "purchases": [
                    {"receipt": "r", "transaction_id": "t1"},
                    {"receipt": "r", "transaction_id": "t2"},
                ],
            },
        )
        assert response.json()["restored_count"] == 2

    @pytest.mark.parametrize("platform", ["web", ""])
    async def test_unknown_platform(self, client, platform):
        response = await client.post(
            "/api/payments/iap/validate",
            json={"platform": platform, "receipt": "r", "transaction_id": "t"},
        )
        assert response.status_code == 422


class TestMisc:
    async def test_scenarios(self, client):
        body = (await client.get("/api/scenarios")).json()
        assert body["scenarios_per_batch"] == 6
        assert "photoshoot" in [s["id"] for s in body["scenarios"]]
        assert body["sample_scenarios"] == ["photoshoot", "rooftop", "coffee_new"]

    async def test_health(self, client):
        body = (await client.get("/health")).json()
        assert body["status"] == "healthy"
        assert body["services"] == {"database": "healthy", "redis": "healthy", "storage": "healthy"}
