"""
test_api.py — HTTP surface: analysis and sync jobs, tenant checks.

Uses FastAPI's TestClient with the fake completion service and in-memory
stores injected through api.main.configure(), so no model is loaded.
Jobs run in background threads; the tests poll until they finish.

Run with:
    python tests/test_api.py
    python -m pytest tests/test_api.py -v
"""

from __future__ import annotations

import logging
import sys
import tempfile
import time
from pathlib import Path

# Make sure the project root is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from fastapi.testclient import TestClient

from api.main import app, configure, registry
from tender_viability.config import config
from tender_viability.recommendation import LABEL_CONDITIONAL
from tender_viability.stores import InMemoryCertificateStore, InMemoryChunkStore, StoreBundle

from samples import BID_TEXT, LIGHTING_CAT_NAME, LIGHTING_CAT_TEXT, FakeCompletion

logging.basicConfig(level=logging.INFO, format="%(levelname)s | %(message)s")
logger = logging.getLogger(__name__)

WORK_DIR = tempfile.mkdtemp(prefix="tender_viability_api_")
config.store.upload_dir = str(Path(WORK_DIR) / "uploads")
config.store.output_dir = str(Path(WORK_DIR) / "outputs")
config.store.certificates_root = str(Path(WORK_DIR) / "certificates")

client = TestClient(app)
ACME = {"X-Tenant-Id": "acme"}
ANNEX_NAME = LIGHTING_CAT_NAME.replace(".pdf", ".txt")


def _fresh_services():
    stores = StoreBundle(certificate_store=InMemoryCertificateStore(), chunk_store=InMemoryChunkStore())
    configure(completion=FakeCompletion(), stores=stores, embedder=None)
    return stores


def _wait(job_id, headers=ACME, timeout=15.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        status = client.get(f"/jobs/{job_id}", headers=headers).json()
        if status["status"] != "running":
            return status
        time.sleep(0.1)
    raise AssertionError(f"job {job_id} still running after {timeout}s")


def test_tenant_header_required():
    """Every tenant-scoped route answers 400 without X-Tenant-Id."""
    for method, url in (("get", "/jobs"), ("post", "/certificates/sync"), ("get", "/jobs/abc")):
        resp = getattr(client, method)(url)
        assert resp.status_code == 400, (url, resp.status_code)
        assert "error" in resp.json()
    assert client.get("/jobs", headers={"X-Tenant-Id": "  "}).status_code == 400
    print("  ✓ test_tenant_header_required")


def test_analyze_job():
    """Upload bid + CAT, poll to completion, fetch result and report."""
    _fresh_services()
    resp = client.post(
        "/analyze",
        headers=ACME,
        files=[
            ("bid", ("edital.txt", BID_TEXT.encode("utf-8"), "text/plain")),
            ("annexes", (ANNEX_NAME, LIGHTING_CAT_TEXT.encode("utf-8"), "text/plain")),
        ],
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["annexes"] == 1
    job_id = body["job_id"]

    status = _wait(job_id)
    assert status["status"] == "completed", status
    assert status["progress"] == 100
    assert "result" not in status

    result = client.get(f"/jobs/{job_id}/result", headers=ACME).json()
    assert result["recommendation"]["label"] == LABEL_CONDITIONAL
    assert result["professional"]["professional"] == "JOSÉ DA SILVA"

    report = client.get(f"/jobs/{job_id}/report", headers=ACME)
    assert report.status_code == 200
    assert report.text.startswith("# RELATÓRIO DE VIABILIDADE")
    print("  ✓ test_analyze_job")


def test_jobs_are_tenant_scoped():
    """Another tenant cannot see, read or cancel a job."""
    job = registry.create("analysis", tenant_id="acme")
    other = {"X-Tenant-Id": "outra"}
    assert client.get(f"/jobs/{job.job_id}", headers=other).status_code == 404
    assert client.get(f"/jobs/{job.job_id}/result", headers=other).status_code == 404
    assert client.post(f"/jobs/{job.job_id}/cancel", headers=other).status_code == 404
    assert job.job_id not in [j["job_id"] for j in client.get("/jobs", headers=other).json()]
    assert job.job_id in [j["job_id"] for j in client.get("/jobs", headers=ACME).json()]
    registry.fail(job.job_id, "test cleanup")
    print("  ✓ test_jobs_are_tenant_scoped")


def test_result_of_running_job_is_conflict():
    """A job without a result answers 409; an unknown one 404."""
    job = registry.create("analysis", tenant_id="acme")
    assert client.get(f"/jobs/{job.job_id}/result", headers=ACME).status_code == 409
    assert client.get(f"/jobs/{job.job_id}/report", headers=ACME).status_code == 409
    # registered directly, so there is no cancel event to set
    assert client.post(f"/jobs/{job.job_id}/cancel", headers=ACME).status_code == 409
    assert client.get("/jobs/nao-existe", headers=ACME).status_code == 404
    registry.fail(job.job_id, "test cleanup")
    print("  ✓ test_result_of_running_job_is_conflict")


def test_sync_and_delete_certificate():
    """Sync ingests the tenant's folder; delete removes one CAT, then 404."""
    stores = _fresh_services()
    folder = Path(config.store.certificates_root) / "acme" / "jose"
    folder.mkdir(parents=True, exist_ok=True)
    (folder / ANNEX_NAME).write_text(LIGHTING_CAT_TEXT, encoding="utf-8")

    resp = client.post("/certificates/sync", headers=ACME)
    assert resp.status_code == 200
    status = _wait(resp.json()["job_id"])
    assert status["status"] == "completed", status

    source_id = f"jose/{ANNEX_NAME}"
    result = client.get(f"/jobs/{resp.json()['job_id']}/result", headers=ACME).json()
    assert result["ingested"] == [source_id]
    assert stores.certificate_store.get("acme", source_id) is not None

    assert client.delete(f"/certificates/jose/{ANNEX_NAME}", headers=ACME).status_code == 200
    assert stores.certificate_store.get("acme", source_id) is None
    assert client.delete(f"/certificates/jose/{ANNEX_NAME}", headers=ACME).status_code == 404
    print("  ✓ test_sync_and_delete_certificate")


def test_failed_job_reports_error():
    """A malformed requirement list fails the job with the error type."""
    configure(
        completion=FakeCompletion(requirements_raw="sem lista"),
        stores=StoreBundle(),
        embedder=None,
    )
    resp = client.post(
        "/analyze",
        headers=ACME,
        files=[("bid", ("edital.txt", BID_TEXT.encode("utf-8"), "text/plain"))],
    )
    status = _wait(resp.json()["job_id"])
    assert status["status"] == "failed"
    assert status["error"].startswith("MalformedModelOutput")
    print("  ✓ test_failed_job_reports_error")


def run_all_tests():
    """Run all tests and report results."""
    print("\n" + "=" * 60)
    print("  TenderViability — API Tests")
    print("=" * 60 + "\n")

    tests = [
        test_tenant_header_required,
        test_analyze_job,
        test_jobs_are_tenant_scoped,
        test_result_of_running_job_is_conflict,
        test_sync_and_delete_certificate,
        test_failed_job_reports_error,
    ]

    passed = 0
    failed = 0

    for test_fn in tests:
        try:
            test_fn()
            passed += 1
        except Exception as exc:
            failed += 1
            print(f"  ✗ {test_fn.__name__} FAILED: {exc}")

    print(f"\n{'=' * 60}")
    print(f"  Results: {passed} passed, {failed} failed, {len(tests)} total")
    print(f"{'=' * 60}\n")

    return failed == 0


if __name__ == "__main__":
    success = run_all_tests()
    sys.exit(0 if success else 1)
