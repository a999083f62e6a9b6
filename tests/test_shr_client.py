"""Tests for the AfyaLink SHR client – live path via httpx.MockTransport, mock path offline."""

import asyncio
import json

import httpx

from fhir_bridge.services.shr_client import PROCESSING_STATUS_URL, SHRClient

BASE = "https://uat.dha.example"


def _bundle(entries=3):
    return {
        "resourceType": "Bundle",
        "id": "bundle-42",
        "type": "transaction",
        "entry": [{"fullUrl": f"urn:uuid:{i}"} for i in range(entries)],
    }


def test_mock_mode_mirrors_transaction_response():
    client = SHRClient(BASE, token="")
    result = asyncio.run(client.submit(_bundle(entries=8)))

    assert result.live is False
    assert result.success is True
    assert result.endpoint == f"{BASE}/v1/shr-med/bundle"

    body = result.responseBody
    assert body["id"] == "bundle-42"
    assert len(body["entry"]) == 8
    assert body["entry"][0]["response"]["status"] == "200 OK"
    assert body["entry"][-1]["response"]["status"] == "201 Created"
    assert body["extension"][0] == {"url": PROCESSING_STATUS_URL, "valueCode": "ACCEPTED"}


def test_live_mode_posts_with_bearer_token():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        seen["content_type"] = request.headers["Content-Type"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"resourceType": "Bundle", "type": "transaction-response"})

    client = SHRClient(BASE + "/", token="tok", transport=httpx.MockTransport(handler))
    result = asyncio.run(client.submit(_bundle()))

    assert result.live is True
    assert result.success is True
    assert result.status == 200
    assert seen["auth"] == "Bearer tok"
    assert seen["content_type"] == "application/fhir+json"
    assert seen["body"]["id"] == "bundle-42"


def test_live_mode_non_json_error_response():
    transport = httpx.MockTransport(lambda request: httpx.Response(502, text="Bad Gateway"))
    result = asyncio.run(SHRClient(BASE, token="tok", transport=transport).submit(_bundle()))

    assert result.success is False
    assert result.status == 502
    assert result.responseBody == {"rawStatus": 502}


def test_live_mode_network_failure():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    transport = httpx.MockTransport(handler)
    result = asyncio.run(SHRClient(BASE, token="tok", transport=transport).submit(_bundle()))

    assert result.success is False
    assert result.live is True
    assert result.error == "Request failed (ConnectError)"
