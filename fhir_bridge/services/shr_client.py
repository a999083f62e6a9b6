"""
AfyaLink Shared Health Record (SHR) submission client.

Posts a transaction Bundle to ``<base>/v1/shr-med/bundle`` with a bearer
token. When no token is configured the call is answered by a mock that
mirrors the SHR ``transaction-response`` shape, so the end-to-end flow can
be demonstrated without credentials. Both paths return the same
``SubmissionResult``; ``live`` tells them apart.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from fhir_bridge.schemas.api import SubmissionResult

logger = logging.getLogger(__name__)

SHR_BUNDLE_PATH = "/v1/shr-med/bundle"
FHIR_JSON = "application/fhir+json"
PROCESSING_STATUS_URL = (
    "http://afyalink.dha.go.ke/fhir/StructureDefinition/bundle-processing-status"
)
_TIMEOUT_S = 15.0


def _mock_response(bundle: dict[str, Any]) -> dict[str, Any]:
    now = datetime.now(timezone.utc).isoformat()
    entries = bundle.get("entry")
    entry_count = len(entries) if isinstance(entries, list) else 0
    return {
        "resourceType": "Bundle",
        "id": bundle.get("id", "unknown"),
        "type": "transaction-response",
        "timestamp": now,
        "entry": [
            {
                "response": {
                    "status": "201 Created" if i == entry_count - 1 and entry_count > 7 else "200 OK",
                    "location": f"urn:uuid:mock-{i}",
                    "etag": 'W/"1"',
                    "lastModified": now,
                }
            }
            for i in range(entry_count)
        ],
        "extension": [{"url": PROCESSING_STATUS_URL, "valueCode": "ACCEPTED"}],
    }


class SHRClient:
    """
    Args:
        base_url:  AfyaLink base URL (``AFYALINK_BASE_URL``).
        token:     Bearer token (``AFYALINK_TOKEN``). Empty means mock mode.
        transport: Optional httpx transport, used by tests.
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.endpoint = f"{base_url.rstrip('/')}{SHR_BUNDLE_PATH}"
        self.token = token
        self._transport = transport

    @property
    def live(self) -> bool:
        return bool(self.token)

    async def submit(self, bundle: dict[str, Any]) -> SubmissionResult:
        if not self.live:
            logger.info("SHR token not configured; returning mocked submission response")
            return SubmissionResult(
                success=True,
                status=200,
                responseBody=_mock_response(bundle),
                endpoint=self.endpoint,
                live=False,
            )

        headers = {
            "Content-Type": FHIR_JSON,
            "Accept": FHIR_JSON,
            "Authorization": f"Bearer {self.token}",
        }
        try:
            async with httpx.AsyncClient(timeout=_TIMEOUT_S, transport=self._transport) as client:
                resp = await client.post(self.endpoint, json=bundle, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("SHR submission failed: %s", type(exc).__name__)
            return SubmissionResult(
                success=False,
                error=f"Request failed ({type(exc).__name__})",
                endpoint=self.endpoint,
                live=True,
            )

        try:
            body: Any = resp.json()
        except ValueError:
            body = {"rawStatus": resp.status_code}

        logger.info("SHR submission returned %d", resp.status_code)
        return SubmissionResult(
            success=resp.is_success,
            status=resp.status_code,
            responseBody=body,
            endpoint=self.endpoint,
            live=True,
        )
