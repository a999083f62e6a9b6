"""Tests for the HTTP surface – no running server, engine or external DB required."""

import asyncio
import base64
import json

import pytest

from fhir_bridge.api import routes
from fhir_bridge.models.audit import AuditLog, BatchRun
from fhir_bridge.services.signing import SigningService

API = "/api/v1"
TEST_SECRET = "test-download-secret"

VALID_BUNDLE = {
    "resourceType": "Bundle",
    "id": "b1",
    "type": "transaction",
    "entry": [
        {
            "fullUrl": "urn:uuid:p1",
            "resource": {
                "resourceType": "Patient",
                "id": "p1",
                "identifier": [{"value": "X"}],
                "name": [{"family": "Kamau"}],
                "gender": "female",
            },
            "request": {"method": "POST", "url": "Patient"},
        }
    ],
}


def _multipart(field, files):
    return [(field, (name, content, "application/octet-stream")) for name, content in files]


# ---------------------------------------------------------------------------
# /validate
# ---------------------------------------------------------------------------

def test_validate_valid_bundle_returns_200(client, db_session):
    response = client.post(f"{API}/validate", json=VALID_BUNDLE)

    assert response.status_code == 200
    body = response.json()
    assert body["valid"] is True
    assert body["score"] == 100
    assert body["stats"]["resourceTypes"] == {"Patient": 1}

    audit = db_session.query(AuditLog).one()
    assert audit.action == "validate"
    assert "Kamau" not in json.dumps(audit.detail)


def test_validate_invalid_bundle_returns_422_with_result(client):
    response = client.post(f"{API}/validate", json={"resourceType": "Bundle", "type": "batch"})

    assert response.status_code == 422
    body = response.json()
    assert body["valid"] is False
    assert any(i["path"] == "Bundle.type" and i["severity"] == "error" for i in body["issues"])


def test_validate_huge_integer_value_returns_422(client):
    panel = {
        "resourceType": "Observation",
        "id": "bp1",
        "status": "final",
        "code": {"coding": [{"system": "http://loinc.org", "code": "85354-9"}]},
        "subject": {"reference": "Patient/p1"},
        "component": [
            {
                "code": {"coding": [{"system": "http://loinc.org", "code": "8480-6"}]},
                "valueQuantity": {"value": "HUGE", "unit": "mmHg"},
            },
            {
                "code": {"coding": [{"system": "http://loinc.org", "code": "8462-2"}]},
                "valueQuantity": {"value": 80, "unit": "mmHg"},
            },
        ],
    }
    document = {
        "resourceType": "Bundle",
        "type": "transaction",
        "entry": [{"fullUrl": "urn:uuid:bp1", "resource": panel}],
    }
    raw = json.dumps(document).replace('"HUGE"', "1" + "0" * 400).encode()

    response = client.post(
        f"{API}/validate", content=raw, headers={"Content-Type": "application/json"}
    )

    assert response.status_code == 422
    paths = [i["path"] for i in response.json()["issues"] if i["severity"] == "error"]
    assert "Bundle.entry[0].resource.component[0].valueQuantity.value" in paths


@pytest.mark.parametrize(
    "method, path, payload",
    [
        ("post", "/validate", VALID_BUNDLE),
        ("post", "/transform", {"visit": 1}),
        ("post", "/download", VALID_BUNDLE),
        ("post", "/submit", VALID_BUNDLE),
    ],
)
def test_audit_writes_run_off_the_event_loop(
    client, db_session, monkeypatch, method, path, payload
):
    loop_running = []
    original = routes.log_action

    def recording_log_action(*args, **kwargs):
        try:
            asyncio.get_running_loop()
            loop_running.append(True)
        except RuntimeError:
            loop_running.append(False)
        return original(*args, **kwargs)

    monkeypatch.setattr(routes, "log_action", recording_log_action)

    response = getattr(client, method)(f"{API}{path}", json=payload)

    assert response.status_code == 200
    assert loop_running == [False]
    assert db_session.query(AuditLog).count() == 1


def test_validate_unparseable_body_returns_400(client):
    response = client.post(
        f"{API}/validate", content=b"{not json", headers={"Content-Type": "application/json"}
    )
    assert response.status_code == 400


def test_validate_non_object_body_returns_400(client):
    assert client.post(f"{API}/validate", json=[1, 2]).status_code == 400


# ---------------------------------------------------------------------------
# /transform, /transform-xml
# ---------------------------------------------------------------------------

def test_transform_json_record(client, staging_dir):
    response = client.post(f"{API}/transform", json={"patient": {"national_id": "1"}})

    assert response.status_code == 200
    assert response.json()["resourceType"] == "Bundle"
    assert list(staging_dir.iterdir()) == []


def test_transform_engine_failure_returns_sanitized_500(client):
    response = client.post(f"{API}/transform", json={"FAIL": True})

    assert response.status_code == 500
    assert response.json()["detail"] == "Error: Invalid Kenyan JSON payload"


def test_transform_bad_json_returns_400(client):
    response = client.post(
        f"{API}/transform", content=b"nope", headers={"Content-Type": "application/json"}
    )
    assert response.status_code == 400


def test_transform_xml_upload(client):
    response = client.post(
        f"{API}/transform-xml", files=_multipart("file", [("visit.xml", b"<patient/>")])
    )
    assert response.status_code == 200
    assert response.json()["meta"]["source"] == "xml"


def test_transform_xml_rejects_non_xml(client):
    response = client.post(
        f"{API}/transform-xml", files=_multipart("file", [("visit.xml", b"plain")])
    )
    assert response.status_code == 400


def test_transform_xml_requires_file_field(client):
    response = client.post(f"{API}/transform-xml", data={"file": "just a string"})
    assert response.status_code == 400


# ---------------------------------------------------------------------------
# /batch
# ---------------------------------------------------------------------------

def test_batch_mixed_results(client, db_session):
    files = [
        ("a.json", b'{"visit": 1}'),
        ("b.json", b'{"FAIL": true}'),
        ("c.xml", b"<patient/>"),
    ]
    response = client.post(f"{API}/batch", files=_multipart("files", files))

    assert response.status_code == 200
    body = response.json()
    assert (body["succeeded"], body["failed"]) == (2, 1)
    assert [r["filename"] for r in body["results"]] == ["a.json", "b.json", "c.xml"]
    assert body["results"][1]["error"] == "Error: Invalid Kenyan JSON payload"

    run = db_session.query(BatchRun).one()
    assert (run.status, run.file_count, run.failed_count) == ("partial", 3, 1)


def test_batch_without_files_returns_400(client):
    assert client.post(f"{API}/batch", data={"other": "x"}).status_code == 400


def test_batch_with_too_many_files_returns_400(client):
    files = [(f"{i}.json", b"{}") for i in range(21)]
    assert client.post(f"{API}/batch", files=_multipart("files", files)).status_code == 400


# ---------------------------------------------------------------------------
# /download, /verify
# ---------------------------------------------------------------------------

def test_download_post_is_signed_attachment(client):
    response = client.post(f"{API}/download", json=VALID_BUNDLE)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/fhir+json")
    assert response.headers["content-disposition"].startswith('attachment; filename="fhir-bundle-')
    assert response.headers["x-bundle-algorithm"] == "HMAC-SHA256"
    assert response.headers["cache-control"] == "no-store"

    canonical = json.dumps(VALID_BUNDLE, indent=2, ensure_ascii=False)
    assert response.text == canonical
    assert SigningService(TEST_SECRET).verify(canonical, response.headers["x-bundle-signature"])


def test_download_get_with_base64url_bundle(client):
    encoded = base64.urlsafe_b64encode(json.dumps(VALID_BUNDLE).encode()).decode().rstrip("=")
    response = client.get(f"{API}/download", params={"bundle": encoded})

    assert response.status_code == 200
    assert json.loads(response.text) == VALID_BUNDLE


def test_download_get_rejects_bad_input(client):
    assert client.get(f"{API}/download").status_code == 400
    assert client.get(f"{API}/download", params={"bundle": "%%%not-json"}).status_code == 400


def test_download_post_rejects_bad_body(client):
    response = client.post(
        f"{API}/download", content=b"{", headers={"Content-Type": "application/json"}
    )
    assert response.status_code == 400


def test_download_rejects_nan_and_infinity(client, db_session):
    for raw in (b'{"resourceType": "Bundle", "v": NaN}', b'{"v": -Infinity}'):
        response = client.post(
            f"{API}/download", content=raw, headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400
        assert "x-bundle-signature" not in response.headers

    encoded = base64.urlsafe_b64encode(b'{"v": Infinity}').decode().rstrip("=")
    assert client.get(f"{API}/download", params={"bundle": encoded}).status_code == 400
    assert db_session.query(AuditLog).count() == 0


def test_verify_roundtrip_and_tamper(client):
    download = client.post(f"{API}/download", json=VALID_BUNDLE)
    signature = download.headers["x-bundle-signature"]

    ok = client.post(
        f"{API}/verify", content=download.content, headers={"X-Bundle-Signature": signature}
    )
    assert ok.json()["valid"] is True

    tampered = download.content.replace(b"Kamau", b"Otieno")
    bad = client.post(f"{API}/verify", content=tampered, headers={"X-Bundle-Signature": signature})
    assert bad.json()["valid"] is False


def test_verify_requires_signature_header(client):
    assert client.post(f"{API}/verify", content=b"{}").status_code == 400


# ---------------------------------------------------------------------------
# /submit, /health
# ---------------------------------------------------------------------------

def test_submit_without_token_is_mocked(client):
    response = client.post(f"{API}/submit", json=VALID_BUNDLE)

    assert response.status_code == 200
    body = response.json()
    assert body["live"] is False
    assert body["success"] is True
    assert body["endpoint"] == "https://shr.example.test/v1/shr-med/bundle"
    assert body["responseBody"]["type"] == "transaction-response"


def test_health(client):
    response = client.get(f"{API}/health")

    assert response.status_code == 200
    body = response.json()
    assert body["database"] == "connected"
    assert body["transform_engine"] == "available"
    assert body["signing_secret"] == "configured"
