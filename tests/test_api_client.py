"""Tests for the ApiClient request dispatcher."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from fieldsync.errors import CacheMissError, InvalidRequestError
from fieldsync.models import ItemStatus

from conftest import API, UPLOAD_URL

DIVISIONS = f"{API}/ref/divisions"
VERIFY = f"{API}/entries/7/verify"


class TestGet:
    """Tests for cached reads."""

    @pytest.mark.asyncio
    async def test_online_get_caches(self, engine, stub):
        stub.script(DIVISIONS, {"a": 1})

        data = await engine.api.get(DIVISIONS)

        assert data == {"a": 1}
        assert (await engine.cache.get(DIVISIONS)).data == {"a": 1}

    @pytest.mark.asyncio
    async def test_cache_round_trip(self, engine, stub):
        """Test an offline GET returns the last successful payload."""
        stub.script(DIVISIONS, {"a": 1})
        await engine.api.get(DIVISIONS)
        engine.monitor.update(connected=False)

        data = await engine.api.get(DIVISIONS)

        assert data == {"a": 1}
        assert len(stub.calls_to(DIVISIONS)) == 1

    @pytest.mark.asyncio
    async def test_offline_miss_raises(self, engine, stub):
        engine.monitor.update(connected=False)

        with pytest.raises(CacheMissError) as exc_info:
            await engine.api.get(f"{API}/ref/ranges")

        assert exc_info.value.offline is True
        assert "offline" in str(exc_info.value)
        assert stub.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("failure", [500, 404, "connect-error", "timeout"])
    async def test_online_failure_falls_back(self, engine, stub, failure):
        await engine.cache.put(DIVISIONS, ["cached"])
        stub.script(DIVISIONS, failure)

        assert await engine.api.get(DIVISIONS) == ["cached"]

    @pytest.mark.asyncio
    async def test_online_failure_without_cache(self, engine, stub):
        stub.script(DIVISIONS, 503)

        with pytest.raises(CacheMissError) as exc_info:
            await engine.api.get(DIVISIONS)

        assert exc_info.value.offline is False

    @pytest.mark.asyncio
    async def test_get_sends_auth(self, engine, stub):
        await engine.credential.set_token("abc")

        await engine.api.get(DIVISIONS, headers={"Accept-Language": "ur"})

        request = stub.calls_to(DIVISIONS)[0]
        assert request.headers["authorization"] == "Bearer abc"
        assert request.headers["accept-language"] == "ur"


class TestSendOnline:
    """Tests for direct delivery while online."""

    @pytest.mark.asyncio
    async def test_success_returns_response(self, engine, stub):
        stub.script(VERIFY, {"status": True, "id": 7})

        result = await engine.api.post(VERIFY, {"remarks": "ok"})

        assert result == {"status": True, "id": 7}
        assert await engine.queue.count() == 0

    @pytest.mark.asyncio
    async def test_headers(self, engine, stub):
        await engine.credential.set_token("tok")

        await engine.api.patch(VERIFY, {"a": 1}, headers={"X-Device": "tab-7"})

        request = stub.calls_to(VERIFY)[0]
        assert request.method == "PATCH"
        assert request.headers["content-type"] == "application/json"
        assert request.headers["authorization"] == "Bearer tok"
        assert request.headers["x-device"] == "tab-7"

    @pytest.mark.asyncio
    async def test_no_auth_header_without_token(self, engine, stub):
        await engine.api.put(VERIFY, {"a": 1})

        assert "authorization" not in stub.calls_to(VERIFY)[0].headers

    @pytest.mark.asyncio
    async def test_attachments_merged(self, engine, stub, photo):
        """Test uploaded URLs are appended in attachment order."""
        await engine.api.post(
            VERIFY,
            {"pictures": ["existing.jpg"], "remarks": "ok"},
            attachments=[photo("a0.jpg"), photo("a1.jpg")],
        )

        assert stub.bodies_to(VERIFY) == [{
            "pictures": [
                "existing.jpg",
                "https://cdn.example.org/p1.jpg",
                "https://cdn.example.org/p2.jpg",
            ],
            "remarks": "ok",
        }]
        assert [str(r.url) for r in stub.requests] == [UPLOAD_URL, UPLOAD_URL, VERIFY]

    @pytest.mark.asyncio
    async def test_attachment_dicts_accepted(self, engine, stub, photo):
        att = photo(target_field="disposalPictures", store_basename=True).to_dict()

        await engine.api.post(VERIFY, {}, attachments=[att])

        assert stub.bodies_to(VERIFY) == [{"disposalPictures": ["p1.jpg"]}]

    @pytest.mark.asyncio
    async def test_non_json_success(self, engine, stub):
        """Test a 2xx with an empty body still counts as delivered."""
        stub.script(VERIFY, 204)

        result = await engine.api.post(VERIFY, {})

        assert result["status"] is True
        assert await engine.queue.count() == 0

    @pytest.mark.asyncio
    async def test_invalid_request_raises(self, engine, stub):
        with pytest.raises(InvalidRequestError):
            await engine.api.send("DELETE", VERIFY, {})

        assert await engine.queue.count() == 0
        assert stub.requests == []

    @pytest.mark.asyncio
    async def test_malformed_attachment_raises(self, engine, stub):
        with pytest.raises(InvalidRequestError, match="local_uri"):
            await engine.api.post(VERIFY, {}, attachments=[{"local_uri": 42, "upload_url": UPLOAD_URL}])

        assert await engine.queue.count() == 0
        assert stub.requests == []


class TestSendFallback:
    """Tests for routing writes into the outbox."""

    @pytest.mark.asyncio
    async def test_offline_write_never_throws(self, engine, stub):
        engine.monitor.update(connected=False)
        before = await engine.queue.count()

        result = await engine.api.post(VERIFY, {"remarks": "ok"})

        assert result["offline"] is True
        assert result["status"] is True
        assert await engine.queue.count() == before + 1
        assert stub.requests == []

    @pytest.mark.asyncio
    async def test_offline_write_keeps_attachments(self, engine, stub, photo):
        engine.monitor.update(connected=False)

        result = await engine.api.post(VERIFY, {"n": 1}, attachments=[photo()])

        item = await engine.queue.get(result["queued_id"])
        assert item.body == {"n": 1}
        assert item.attachments[0].file_name == "tree.jpg"
        assert stub.uploads == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("failure", [500, 422, "connect-error", "timeout"])
    async def test_online_failure_enqueues_original(self, engine, stub, photo, failure):
        """Test the queued copy is the request before attachment merging."""
        stub.script(VERIFY, failure)

        result = await engine.api.post(VERIFY, {"pictures": ["a.jpg"]}, attachments=[photo()])
        await engine.processor.wait_idle()

        assert result["offline"] is True
        assert "Network failed" in result["message"]
        item = (await engine.queue.list_all() or [None])[0]
        if failure == 422:
            # the immediate replay classified it as permanent
            assert item is None
            assert len(await engine.queue.list_dropped()) == 1
        else:
            assert item.body == {"pictures": ["a.jpg"]}
            assert len(item.attachments) == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_enqueues(self, engine, stub, photo):
        """Test an error outside the library taxonomy still queues the write."""
        engine.api._uploader.upload_all = AsyncMock(side_effect=RuntimeError("boom"))

        result = await engine.api.post(VERIFY, {"n": 1}, attachments=[photo()])
        await engine.processor.wait_idle()

        assert result["offline"] is True
        assert result["message"] == "Network failed. Saved to offline queue."
        item = await engine.queue.get(result["queued_id"])
        assert item.body == {"n": 1}
        assert item.status == ItemStatus.PENDING

    @pytest.mark.asyncio
    async def test_upload_failure_enqueues(self, engine, stub, photo):
        stub.upload_outcome = "fail"

        result = await engine.api.post(VERIFY, {}, attachments=[photo()])
        await engine.processor.wait_idle()

        assert result["offline"] is True
        assert stub.calls_to(VERIFY) == []
        assert await engine.queue.count() == 1

    @pytest.mark.asyncio
    async def test_queued_body_isolated_from_caller(self, engine, stub):
        """Test later edits to the caller's form state do not reach the queue."""
        engine.monitor.update(connected=False)
        pictures = ["existing.jpg"]

        result = await engine.api.post(VERIFY, {"pictures": pictures})
        pictures.append("edited-after-send.jpg")
        await engine.queue.persist()

        item = await engine.queue.get(result["queued_id"])
        assert item.body == {"pictures": ["existing.jpg"]}

    @pytest.mark.asyncio
    async def test_enqueue_snapshots_headers(self, engine, stub):
        await engine.credential.set_token("at-enqueue")
        engine.monitor.update(connected=False)

        result = await engine.api.post(VERIFY, {}, headers={"X-Device": "tab-7"})

        item = await engine.queue.get(result["queued_id"])
        assert item.headers["Authorization"] == "Bearer at-enqueue"
        assert item.headers["X-Device"] == "tab-7"

    @pytest.mark.asyncio
    async def test_enqueue_notifies(self, engine, stub):
        engine.monitor.update(connected=False)
        subscriber = MagicMock()
        engine.notifier.subscribe(subscriber)

        await engine.api.post(VERIFY, {})

        subscriber.assert_called_once()

    @pytest.mark.asyncio
    async def test_online_enqueue_triggers_replay(self, engine, stub):
        """Test a queued write is replayed right away while online."""
        stub.script(VERIFY, 503, 200)

        result = await engine.api.post(VERIFY, {"n": 1})
        await engine.processor.wait_idle()

        assert result["offline"] is True
        assert len(stub.calls_to(VERIFY)) == 2
        assert await engine.queue.count() == 0

    @pytest.mark.asyncio
    async def test_offline_enqueue_does_not_trigger(self, engine, stub):
        engine.monitor.update(connected=False)

        await engine.api.post(VERIFY, {})

        assert engine.processor._task is None

    @pytest.mark.asyncio
    async def test_reconnect_drains_queue(self, engine, stub):
        """Test the offline -> online edge replays queued writes."""
        engine.monitor.update(connected=False)
        await engine.api.post(VERIFY, {"n": 1})
        await engine.api.post(VERIFY, {"n": 2})

        engine.monitor.update(connected=True, reachable=True)
        await engine.processor.wait_idle()

        assert stub.bodies_to(VERIFY) == [{"n": 1}, {"n": 2}]
        assert await engine.queue.count() == 0

    @pytest.mark.asyncio
    async def test_idempotency_key_reused_on_replay(self, engine, stub):
        engine.api.idempotency_header = "Idempotency-Key"
        engine.processor.idempotency_header = "Idempotency-Key"
        stub.script(VERIFY, 500, 200)

        result = await engine.api.post(VERIFY, {})
        await engine.processor.wait_idle()

        keys = [r.headers["idempotency-key"] for r in stub.calls_to(VERIFY)]
        assert keys == [result["queued_id"], result["queued_id"]]
