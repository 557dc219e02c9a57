"""Shared fixtures and helpers for services.management test package."""

from __future__ import annotations

import base64
import hashlib
import json
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from relayguard.services.management import Management, ManagementConfig
from relayguard.services.management.service import RPC_CONTENT_TYPE
from tests.conftest import EVENT_ID, OWNER


NOW = 1_700_000_000


@pytest.fixture
def management_config() -> ManagementConfig:
    return ManagementConfig(interval=60.0, host="127.0.0.1", port=9999, owner_pubkey=OWNER)


@pytest.fixture
def management_service(store_double: MagicMock, management_config: ManagementConfig) -> Management:
    return Management(store=store_double, config=management_config)


@pytest.fixture
def test_client(management_service: Management) -> TestClient:
    """FastAPI TestClient from the Management service."""
    return TestClient(management_service._build_app())


@pytest.fixture
def authed_as():
    """Patch NIP-98 verification to authenticate as the given key."""
    patcher = None

    def _authed_as(pubkey: str | None) -> None:
        nonlocal patcher
        patcher = patch(
            "relayguard.services.management.service.authenticate", return_value=pubkey
        )
        patcher.start()

    yield _authed_as
    if patcher is not None:
        patcher.stop()


def rpc_post(
    client: TestClient,
    method: str,
    params: list[Any] | None = None,
    *,
    content_type: str = RPC_CONTENT_TYPE,
    authorization: str = "Nostr dGVzdA==",
):
    body = json.dumps({"method": method, "params": params if params is not None else []})
    return client.post(
        "/",
        content=body,
        headers={"content-type": content_type, "authorization": authorization},
    )


def auth_event(
    *,
    url: str = "http://testserver/",
    method: str = "POST",
    body: bytes | None = None,
    kind: int = 27235,
    created_at: int = NOW,
    pubkey: str = OWNER,
) -> dict[str, Any]:
    tags = [["u", url], ["method", method]]
    if body is not None:
        tags.append(["payload", hashlib.sha256(body).hexdigest()])
    return {
        "id": EVENT_ID,
        "pubkey": pubkey,
        "created_at": created_at,
        "kind": kind,
        "tags": tags,
        "content": "",
        "sig": "0" * 128,
    }


def auth_header(event: dict[str, Any]) -> str:
    return "Nostr " + base64.b64encode(json.dumps(event).encode()).decode()
