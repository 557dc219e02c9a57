"""Unit tests for services.management.service module.

Tests:
- Management service initialization
- JSON-RPC endpoint via TestClient: status codes and result shapes
- Run cycle metrics and server task monitoring
"""

import asyncio
import json
import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from relayguard.core.event_store import PostgresEventStore
from relayguard.core.exceptions import ConnectionPoolError
from relayguard.models import IdReason, PubKeyReason
from relayguard.models.constants import ServiceName
from relayguard.moderation import ManagementApi
from relayguard.services.management import Management, ManagementConfig
from tests.conftest import ALICE, BOB, EVENT_ID, OWNER, make_event
from tests.unit.services.management.conftest import auth_event, auth_header, rpc_post


def _event_row() -> dict:
    event = make_event()
    return {**event.to_dict(), "tags": json.dumps(event.to_dict()["tags"])}


# ============================================================================
# Management Service Tests
# ============================================================================


class TestManagement:
    def test_service_name(self) -> None:
        assert Management.SERVICE_NAME == ServiceName.MANAGEMENT

    def test_init(self, management_service: Management) -> None:
        assert management_service._requests_total == 0
        assert management_service._auth_failures == 0
        assert management_service._server_task is None
        assert management_service.api.owner_pubkey == OWNER

    def test_owner_from_environment(self, store_double, monkeypatch) -> None:
        monkeypatch.setenv("RELAY_PUBKEY", BOB)
        service = Management(store=store_double, config=ManagementConfig())
        assert service.api.owner_pubkey == BOB

    def test_explicit_api(self, store_double) -> None:
        api = ManagementApi(store_double, ALICE)
        service = Management(store=store_double, api=api)
        assert service.api is api

    def test_registers_relay_event_table(self, store_double) -> None:
        service = Management.from_dict({"owner_pubkey": OWNER}, store=store_double)
        (event_store,) = service.api.event_stores
        assert isinstance(event_store, PostgresEventStore)
        assert event_store.config.table == "event"

    def test_event_table_from_config(self, store_double) -> None:
        service = Management.from_dict(
            {"owner_pubkey": OWNER, "event_store": {"table": "relay.event"}}, store=store_double
        )
        assert service.api.event_stores[0].config.table == "relay.event"

    def test_event_table_disabled(self, store_double) -> None:
        service = Management.from_dict(
            {"owner_pubkey": OWNER, "event_store": {"enabled": False}}, store=store_double
        )
        assert service.api.event_stores == ()

    def test_explicit_event_stores(self, store_double) -> None:
        event_store = MagicMock()
        service = Management(
            store=store_double,
            config=ManagementConfig(owner_pubkey=OWNER),
            event_stores=[event_store],
        )
        assert service.api.event_stores == (event_store,)

    async def test_ban_event_deletes_from_event_table(self, store_double, owner_ctx) -> None:
        service = Management.from_dict({"owner_pubkey": OWNER}, store=store_double)
        store_double.pool.fetch = AsyncMock(return_value=[_event_row()])
        store_double.pool.execute = AsyncMock(return_value="DELETE 1")

        result = await service.api.ban_event(owner_ctx, EVENT_ID, "illegal")

        assert result.ok
        assert result.deleted == 1
        sql, *args = store_double.pool.execute.call_args.args
        assert sql == "DELETE FROM event WHERE id = $1"
        assert args == [EVENT_ID]


# ============================================================================
# HTTP Endpoint Tests
# ============================================================================


class TestHealth:
    def test_health(self, test_client: TestClient) -> None:
        resp = test_client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


class TestRpcAuthentication:
    """Signature checks patched out; tag and payload checks run for real."""

    @pytest.fixture(autouse=True)
    def _signatures_valid(self):
        with patch("relayguard.services.management.auth.NostrEvent") as cls:
            cls.from_json.return_value.verify.return_value = True
            yield

    def test_header_without_payload_tag_rejected(self, test_client, store_double) -> None:
        header = auth_header(auth_event(created_at=int(time.time())))
        resp = rpc_post(test_client, "banpubkey", [BOB, "spam"], authorization=header)
        assert resp.status_code == 401
        assert resp.json()["error"].startswith("auth-required:")
        store_double.upsert_banned_pubkey.assert_not_called()

    def test_header_with_payload_tag_accepted(self, test_client, store_double) -> None:
        body = json.dumps({"method": "banpubkey", "params": [BOB, "spam"]}).encode()
        header = auth_header(auth_event(created_at=int(time.time()), body=body))
        resp = rpc_post(test_client, "banpubkey", [BOB, "spam"], authorization=header)
        assert resp.json() == {"result": True, "error": None}
        store_double.upsert_banned_pubkey.assert_awaited_once_with(BOB, "spam")


class TestRpcEndpoint:
    def test_supported_methods(self, test_client, authed_as) -> None:
        authed_as(OWNER)
        resp = rpc_post(test_client, "supportedmethods")
        assert resp.status_code == 200
        body = resp.json()
        assert body["error"] is None
        assert "banpubkey" in body["result"]

    def test_ban_pubkey(self, test_client, authed_as, store_double) -> None:
        authed_as(OWNER)
        resp = rpc_post(test_client, "banpubkey", [BOB, "spam"])
        assert resp.json() == {"result": True, "error": None}
        store_double.upsert_banned_pubkey.assert_awaited_once_with(BOB, "spam")

    def test_list_banned_pubkeys(self, test_client, authed_as, store_double) -> None:
        authed_as(OWNER)
        store_double.list_banned_pubkeys.return_value = [PubKeyReason(BOB, "spam")]
        resp = rpc_post(test_client, "listbannedpubkeys")
        assert resp.json()["result"] == [{"pubkey": BOB, "reason": "spam"}]

    def test_list_events_needing_moderation(self, test_client, authed_as, store_double) -> None:
        authed_as(OWNER)
        store_double.list_unresolved_reports.return_value = [IdReason(EVENT_ID, "spam: x")]
        resp = rpc_post(test_client, "listeventsneedingmoderation")
        assert resp.json()["result"] == [{"id": EVENT_ID, "reason": "spam: x"}]

    def test_content_type_with_parameters(self, test_client, authed_as) -> None:
        authed_as(OWNER)
        resp = rpc_post(
            test_client, "supportedmethods", content_type="application/nostr+json+rpc; charset=utf-8"
        )
        assert resp.status_code == 200

    def test_wrong_content_type(self, test_client, authed_as) -> None:
        authed_as(OWNER)
        resp = rpc_post(test_client, "supportedmethods", content_type="application/json")
        assert resp.status_code == 415
        assert "application/nostr+json+rpc" in resp.json()["error"]

    def test_unauthenticated(self, test_client, authed_as, store_double) -> None:
        authed_as(None)
        resp = rpc_post(test_client, "banpubkey", [BOB, "spam"])
        assert resp.status_code == 401
        assert resp.json()["error"].startswith("auth-required:")
        store_double.upsert_banned_pubkey.assert_not_called()

    def test_non_owner(self, test_client, authed_as, management_service) -> None:
        authed_as(ALICE)
        resp = rpc_post(test_client, "listbannedpubkeys")
        assert resp.status_code == 401
        assert management_service._auth_failures == 1

    def test_invalid_json(self, test_client, authed_as) -> None:
        authed_as(OWNER)
        resp = test_client.post(
            "/", content=b"{nope", headers={"content-type": "application/nostr+json+rpc"}
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid JSON"

    @pytest.mark.parametrize("payload", [[], {"params": []}, {"method": 5}])
    def test_not_an_rpc_object(self, test_client, authed_as, payload) -> None:
        authed_as(OWNER)
        resp = test_client.post(
            "/",
            content=json.dumps(payload),
            headers={"content-type": "application/nostr+json+rpc"},
        )
        assert resp.status_code == 400

    def test_body_too_large(self, store_double, authed_as) -> None:
        authed_as(OWNER)
        service = Management(
            store=store_double, config=ManagementConfig(owner_pubkey=OWNER, max_body_size=1024)
        )
        client = TestClient(service._build_app())
        resp = rpc_post(client, "banpubkey", [BOB, "x" * 2000])
        assert resp.status_code == 413

    def test_unknown_method(self, test_client, authed_as) -> None:
        authed_as(OWNER)
        resp = rpc_post(test_client, "nosuchmethod")
        assert resp.status_code == 200
        assert resp.json() == {"result": None, "error": "method not supported: nosuchmethod"}

    def test_invalid_params(self, test_client, authed_as) -> None:
        authed_as(OWNER)
        resp = rpc_post(test_client, "banevent", ["not-an-id"])
        assert resp.status_code == 200
        assert resp.json()["error"].startswith("invalid event id")

    def test_database_error(self, test_client, authed_as, store_double) -> None:
        authed_as(OWNER)
        store_double.upsert_banned_pubkey.side_effect = ConnectionPoolError("pool exhausted")
        resp = rpc_post(test_client, "banpubkey", [BOB, "spam"])
        assert resp.status_code == 500
        assert resp.json()["error"] == "database error: pool exhausted"

    def test_ban_event_cascade_failure(self, store_double, authed_as) -> None:
        authed_as(OWNER)
        event_store = MagicMock()
        event_store.query.side_effect = RuntimeError("offline")
        service = Management(
            store=store_double,
            config=ManagementConfig(owner_pubkey=OWNER),
            event_stores=[event_store],
        )
        resp = rpc_post(TestClient(service._build_app()), "banevent", [EVENT_ID, "illegal"])
        assert resp.status_code == 200
        assert resp.json()["error"].startswith("event banned but not deleted")
        store_double.upsert_banned_event.assert_awaited_once_with(EVENT_ID, "illegal")

    def test_request_counters(self, test_client, authed_as, management_service) -> None:
        authed_as(OWNER)
        rpc_post(test_client, "supportedmethods")
        rpc_post(test_client, "supportedmethods", content_type="text/plain")
        assert management_service._requests_total == 2
        assert management_service._requests_failed == 1

    def test_authenticate_receives_request(self, test_client, management_service) -> None:
        with patch(
            "relayguard.services.management.service.authenticate", return_value=OWNER
        ) as mock_auth:
            rpc_post(test_client, "supportedmethods", authorization="Nostr abc")
        args, kwargs = mock_auth.call_args
        assert args == ("Nostr abc",)
        assert kwargs["url"] == "http://testserver/"
        assert kwargs["method"] == "POST"
        assert json.loads(kwargs["body"]) == {"method": "supportedmethods", "params": []}
        assert kwargs["config"] is management_service.config.auth


# ============================================================================
# Run Cycle Tests
# ============================================================================


class TestManagementRun:
    async def test_run_reports_metrics(self, management_service, store_double) -> None:
        management_service._requests_total = 42
        management_service._requests_failed = 3
        management_service._auth_failures = 2
        store_double.count_unresolved_reports.return_value = 1

        with (
            patch.object(management_service, "inc_counter") as mock_counter,
            patch.object(management_service, "set_gauge") as mock_gauge,
        ):
            await management_service.run()

        mock_counter.assert_any_call("requests_total", 42)
        mock_counter.assert_any_call("requests_failed", 3)
        mock_counter.assert_any_call("auth_failures", 2)
        mock_gauge.assert_any_call("reports_pending", 1)
        store_double.list_unresolved_reports.assert_not_called()

    async def test_run_resets_counters(self, management_service) -> None:
        management_service._requests_total = 10
        management_service._auth_failures = 1
        with (
            patch.object(management_service, "inc_counter"),
            patch.object(management_service, "set_gauge"),
        ):
            await management_service.run()
        assert management_service._requests_total == 0
        assert management_service._auth_failures == 0

    async def test_run_detects_crashed_server_task(self, management_service) -> None:
        failed_task = MagicMock(spec=asyncio.Task)
        failed_task.done.return_value = True
        failed_task.cancelled.return_value = False
        failed_task.exception.return_value = OSError("bind failed")
        management_service._server_task = failed_task

        with pytest.raises(RuntimeError, match="HTTP server task has stopped unexpectedly"):
            await management_service.run()

    async def test_run_propagates_store_errors(self, management_service, store_double) -> None:
        store_double.count_unresolved_reports.side_effect = ConnectionPoolError("down")
        with pytest.raises(ConnectionPoolError):
            await management_service.run()


class TestManagementLifecycle:
    async def test_context_manager_starts_and_stops_server(self, management_service) -> None:
        started = asyncio.Event()

        async def fake_server(app) -> None:
            started.set()
            await asyncio.Event().wait()

        with patch.object(management_service, "_run_server", side_effect=fake_server):
            async with management_service:
                await asyncio.wait_for(started.wait(), timeout=1.0)
                assert management_service._server_task is not None
        assert management_service._server_task is None
