"""Tests for API endpoints."""

from __future__ import annotations

import asyncio
import dataclasses
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from carepath.api.app import create_app, supervise_triage
from carepath.api.rate_limiting import limiter
from carepath.moderation.policy import MESSAGE_PENDING_ATTACHMENT, MESSAGE_PUBLISHED
from conftest import verdict_json

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI

    from carepath.config import Settings
    from carepath.core.deps import CarepathDeps
    from conftest import ScriptedClassifier


@pytest.fixture
def app(deps: CarepathDeps) -> FastAPI:
    """Create the app over the test service graph (lifespan not run)."""
    app = create_app()
    app.state.deps = deps
    limiter.reset()
    return app


@pytest.fixture
async def client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def _submission(text: str, **kwargs: Any) -> dict[str, Any]:
    return {"text": text, "author_id": "student-1", "content_type": "post", **kwargs}


def _error_code(response: httpx.Response) -> str:
    return response.json()["error"]["code"]  # type: ignore[no-any-return]


class TestHealthRoutes:
    """Tests for health check endpoints."""

    async def test_health_returns_ok(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_ready_returns_ok_when_db_connected(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/ready")
        assert response.status_code == 200
        assert response.json() == {"status": "ready", "database": "connected"}

    async def test_ready_returns_503_when_db_unreachable(
        self, app: FastAPI, client: httpx.AsyncClient, deps: CarepathDeps
    ) -> None:
        factory = MagicMock()
        factory.return_value.__aenter__ = AsyncMock(side_effect=ConnectionError("refused"))
        factory.return_value.__aexit__ = AsyncMock(return_value=None)
        app.state.deps = dataclasses.replace(deps, session_factory=factory)

        response = await client.get("/ready")

        assert response.status_code == 503
        assert response.json() == {"status": "not_ready", "database": "disconnected"}

        detailed = (await client.get("/health/detailed")).json()
        assert detailed["status"] == "unhealthy"

    async def test_detailed_health(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/health/detailed")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        indicators = {i["name"]: i for i in data["indicators"]}
        assert set(indicators) == {"database", "pending_queue", "triage"}
        assert indicators["triage"]["message"] == "background loop disabled"
        assert indicators["pending_queue"]["message"] == "0 awaiting review"


class TestSubmissionRoutes:
    """Tests for POST /submissions."""

    async def test_safe_post_is_published(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/submissions", json=_submission("Chào cả nhà"))

        assert response.status_code == 200
        data = response.json()
        assert data["action"] == "allow"
        assert data["message"] == MESSAGE_PUBLISHED
        assert data["published_id"] is not None
        assert data["flag_id"] is None

    async def test_high_risk_post_is_rejected_and_flagged(
        self, client: httpx.AsyncClient, scripted: ScriptedClassifier
    ) -> None:
        scripted.push("classify", verdict_json("HIGH", "Ý định tự hại"))

        response = await client.post("/submissions", json=_submission("Mình muốn biến mất"))

        data = response.json()
        assert data["action"] == "reject"
        assert data["published_id"] is None
        assert data["flag_id"] is not None

    async def test_attachment_is_held(
        self, client: httpx.AsyncClient, scripted: ScriptedClassifier
    ) -> None:
        response = await client.post(
            "/submissions",
            json=_submission("Ảnh", image_url="https://cdn.example.com/a.png"),
        )

        data = response.json()
        assert data["action"] == "pending"
        assert data["message"] == MESSAGE_PENDING_ATTACHMENT
        assert data["pending_id"] is not None
        assert scripted.calls("classify") == 0

    async def test_comment_without_target(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/submissions", json=_submission("Hay quá", content_type="comment")
        )
        assert response.status_code == 422
        assert _error_code(response) == "VALIDATION_ERROR"

    async def test_message_to_unknown_room(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/submissions",
            json=_submission("Chào cô", content_type="message", target_id="missing"),
        )
        assert response.status_code == 404
        assert _error_code(response) == "RECORD_NOT_FOUND"

    async def test_invalid_body(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/submissions", json={"text": "no author"})
        assert response.status_code == 422

    async def test_rate_limited(
        self,
        client: httpx.AsyncClient,
        settings: Settings,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(settings, "rate_limit_requests", 2)

        statuses = [
            (await client.post("/submissions", json=_submission(f"bài {i}"))).status_code
            for i in range(3)
        ]

        assert statuses == [200, 200, 429]
        response = await client.post("/submissions", json=_submission("thêm"))
        assert _error_code(response) == "RATE_LIMITED"


class TestFlagRoutes:
    """Tests for the flag ledger endpoints."""

    async def _flag(self, client: httpx.AsyncClient, scripted: ScriptedClassifier) -> str:
        scripted.push("classify", verdict_json("HIGH"))
        response = await client.post("/submissions", json=_submission("Mình muốn biến mất"))
        return response.json()["flag_id"]  # type: ignore[no-any-return]

    async def test_list_unresolved(
        self, client: httpx.AsyncClient, scripted: ScriptedClassifier
    ) -> None:
        flag_id = await self._flag(client, scripted)

        response = await client.get("/flags")

        data = response.json()
        assert data["count"] == 1
        assert [f["id"] for f in data["high"]] == [flag_id]
        assert data["high"][0]["content_text"] == "Mình muốn biến mất"
        assert data["medium"] == []
        assert data["mild"] == []

    async def test_resolve_once(
        self, client: httpx.AsyncClient, scripted: ScriptedClassifier
    ) -> None:
        flag_id = await self._flag(client, scripted)

        first = await client.post(f"/flags/{flag_id}/resolve", json={"notes": "Đã liên hệ"})
        second = await client.post(f"/flags/{flag_id}/resolve", json={"notes": "Lần hai"})

        assert first.status_code == 200
        assert first.json()["resolved"] is True
        assert first.json()["notes"] == "Đã liên hệ"
        assert second.status_code == 409
        assert _error_code(second) == "ALREADY_RESOLVED"
        assert (await client.get("/flags")).json()["count"] == 0

    async def test_resolve_unknown(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/flags/missing/resolve", json={})
        assert response.status_code == 404
        assert _error_code(response) == "RECORD_NOT_FOUND"

    async def test_user_flags(
        self, client: httpx.AsyncClient, scripted: ScriptedClassifier
    ) -> None:
        flag_id = await self._flag(client, scripted)
        await client.post(f"/flags/{flag_id}/resolve", json={})

        everything = await client.get("/users/student-1/flags")
        open_only = await client.get(
            "/users/student-1/flags", params={"include_resolved": "false"}
        )

        assert [f["id"] for f in everything.json()] == [flag_id]
        assert open_only.json() == []


class TestPendingRoutes:
    """Tests for manual review endpoints."""

    async def _hold(self, client: httpx.AsyncClient, text: str = "Ảnh") -> str:
        response = await client.post(
            "/submissions",
            json=_submission(text, image_url="https://cdn.example.com/a.png", topic="school"),
        )
        return response.json()["pending_id"]  # type: ignore[no-any-return]

    async def test_list_and_approve(self, client: httpx.AsyncClient) -> None:
        record_id = await self._hold(client)

        listed = await client.get("/pending")
        approved = await client.post(
            f"/pending/{record_id}/approve", json={"reviewer_id": "counselor-1"}
        )
        again = await client.post(f"/pending/{record_id}/approve", json={})

        assert [r["id"] for r in listed.json()] == [record_id]
        assert approved.status_code == 200
        assert approved.json()["record_id"] == record_id
        assert approved.json()["published_id"]
        assert again.status_code == 409
        assert _error_code(again) == "ALREADY_RESOLVED"
        assert (await client.get("/pending")).json() == []

    async def test_reject(self, client: httpx.AsyncClient) -> None:
        record_id = await self._hold(client)

        response = await client.post(f"/pending/{record_id}/reject", json={})

        assert response.status_code == 200
        assert response.json()["status"] == "rejected"

    async def test_flag_reject(self, client: httpx.AsyncClient) -> None:
        record_id = await self._hold(client, "Ảnh tự làm đau")

        response = await client.post(
            f"/pending/{record_id}/flag-reject",
            json={"severity": "high", "category": "self-harm", "reviewer_id": "counselor-1"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "rejected"
        flags = (await client.get("/flags")).json()
        assert flags["high"][0]["ai_reason"] == "self-harm"

    async def test_flag_reject_requires_category(self, client: httpx.AsyncClient) -> None:
        record_id = await self._hold(client)

        response = await client.post(
            f"/pending/{record_id}/flag-reject", json={"severity": "high", "category": ""}
        )

        assert response.status_code == 422

    async def test_approve_unknown(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/pending/missing/approve", json={})
        assert response.status_code == 404


class TestRoomRoutes:
    """Tests for chat room endpoints."""

    async def _room(self, client: httpx.AsyncClient) -> str:
        response = await client.post("/rooms", json={"student_id": "student-1"})
        assert response.status_code == 201
        return response.json()["id"]  # type: ignore[no-any-return]

    async def test_open_and_get(self, client: httpx.AsyncClient) -> None:
        room_id = await self._room(client)

        again = await client.post("/rooms", json={"student_id": "student-1"})
        fetched = await client.get(f"/rooms/{room_id}")
        listed = await client.get("/rooms")

        assert again.json()["id"] == room_id
        assert fetched.json()["urgency_level"] == 0
        assert [r["id"] for r in listed.json()] == [room_id]

    async def test_unknown_room(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/rooms/missing")
        assert response.status_code == 404
        assert _error_code(response) == "RECORD_NOT_FOUND"

    async def test_staff_message(self, client: httpx.AsyncClient) -> None:
        room_id = await self._room(client)

        response = await client.post(
            f"/rooms/{room_id}/messages",
            json={"sender_id": "counselor-1", "content": "Chào em"},
        )

        assert response.status_code == 201
        assert response.json()["sender_role"] == "counselor"
        room = (await client.get(f"/rooms/{room_id}")).json()
        assert room["counselor_first_reply_at"] is not None

    async def test_student_cannot_bypass_moderation(self, client: httpx.AsyncClient) -> None:
        room_id = await self._room(client)

        response = await client.post(
            f"/rooms/{room_id}/messages",
            json={"sender_id": "student-1", "sender_role": "student", "content": "hi"},
        )

        assert response.status_code == 422
        assert _error_code(response) == "VALIDATION_ERROR"

    async def test_transcript_and_delete(self, client: httpx.AsyncClient) -> None:
        room_id = await self._room(client)
        await client.post(
            "/submissions",
            json=_submission("Em chào cô", content_type="message", target_id=room_id),
        )
        reply = await client.post(
            f"/rooms/{room_id}/messages",
            json={"sender_id": "counselor-1", "content": "Chào em"},
        )

        messages = (await client.get(f"/rooms/{room_id}/messages")).json()
        deleted = await client.delete(f"/rooms/{room_id}/messages/{reply.json()['id']}")
        remaining = (await client.get(f"/rooms/{room_id}/messages", params={"limit": 10})).json()

        assert [m["content"] for m in messages] == ["Em chào cô", "Chào em"]
        assert deleted.status_code == 204
        assert [m["content"] for m in remaining] == ["Em chào cô"]
        room = (await client.get(f"/rooms/{room_id}")).json()
        assert room["counselor_first_reply_at"] is not None

    async def test_handled_and_reopen(self, client: httpx.AsyncClient) -> None:
        room_id = await self._room(client)

        handled = await client.post(f"/rooms/{room_id}/handled", json={"staff_id": "counselor-1"})
        reopened = await client.post(f"/rooms/{room_id}/reopen")

        assert handled.json()["urgency_level"] == -1
        assert handled.json()["is_counseled"] is True
        assert reopened.json()["urgency_level"] == 0
        assert reopened.json()["is_counseled"] is False

    async def test_refresh_assessment(
        self, client: httpx.AsyncClient, scripted: ScriptedClassifier
    ) -> None:
        room_id = await self._room(client)
        await client.post(
            "/submissions",
            json=_submission("Em mất ngủ", content_type="message", target_id=room_id),
        )
        scripted.push("summarize", '{"urgencyLevel": 2, "suicideRisk": "low"}')

        response = await client.post(f"/rooms/{room_id}/assessment")

        assert response.status_code == 200
        assert response.json()["urgencyLevel"] == 2
        assert response.json()["suicideRisk"] == "low"
        assert (await client.get(f"/rooms/{room_id}")).json()["urgency_level"] == 2

    async def test_refresh_assessment_unavailable(
        self, client: httpx.AsyncClient, scripted: ScriptedClassifier
    ) -> None:
        room_id = await self._room(client)
        await client.post(
            "/submissions",
            json=_submission("Em buồn", content_type="message", target_id=room_id),
        )
        scripted.push("summarize", "not json")

        response = await client.post(f"/rooms/{room_id}/assessment")

        assert response.status_code == 503
        assert _error_code(response) == "CLASSIFIER_UNAVAILABLE"

    async def test_close_room(self, client: httpx.AsyncClient) -> None:
        room_id = await self._room(client)

        closed = await client.delete(f"/rooms/{room_id}")

        assert closed.status_code == 204
        assert (await client.get(f"/rooms/{room_id}")).status_code == 404


class TestNoteRoutes:
    """Tests for case notes endpoints."""

    async def test_missing_notes(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/notes/student-1")
        assert response.status_code == 404

    async def test_save_and_get(self, client: httpx.AsyncClient) -> None:
        saved = await client.put(
            "/notes/student-1",
            json={"content": "Theo dõi tuần sau", "staff_id": "counselor-1"},
        )
        fetched = await client.get("/notes/student-1")

        assert saved.status_code == 200
        assert saved.json()["owner"] == "staff"
        assert fetched.json()["content"] == "Theo dõi tuần sau"

    async def test_staff_id_required(self, client: httpx.AsyncClient) -> None:
        response = await client.put("/notes/student-1", json={"content": "x", "staff_id": ""})
        assert response.status_code == 422


class _FlakyTriage:
    """Triage stand-in whose first run crashes."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.runs: list[object] = []
        self.subscriptions = 0

    def subscribe(self) -> object:
        self.subscriptions += 1
        return object()

    async def run(self, subscription: object) -> None:
        self.runs.append(subscription)
        if len(self.runs) <= self.failures:
            msg = "boom"
            raise RuntimeError(msg)


class TestTriageSupervisor:
    """Tests for the restart loop around the triage manager."""

    async def test_restarts_on_fresh_subscription(self) -> None:
        triage = _FlakyTriage(failures=1)
        first = object()

        await supervise_triage(
            triage,  # type: ignore[arg-type]
            asyncio.Event(),
            first,  # type: ignore[arg-type]
            restart_delay=0.01,
        )

        assert len(triage.runs) == 2
        assert triage.runs[0] is first
        assert triage.runs[1] is not first
        assert triage.subscriptions == 1

    async def test_clean_exit_does_not_restart(self) -> None:
        triage = _FlakyTriage(failures=0)

        await supervise_triage(triage, asyncio.Event(), object())  # type: ignore[arg-type]

        assert len(triage.runs) == 1

    async def test_stopping_during_backoff(self) -> None:
        triage = _FlakyTriage(failures=5)
        stopping = asyncio.Event()
        task = asyncio.create_task(
            supervise_triage(
                triage,  # type: ignore[arg-type]
                stopping,
                object(),  # type: ignore[arg-type]
                restart_delay=10.0,
            )
        )
        await asyncio.sleep(0.05)

        stopping.set()
        await asyncio.wait_for(task, timeout=1.0)

        assert len(triage.runs) == 1
