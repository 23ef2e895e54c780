import logging
import shutil
import threading
import uuid
from pathlib import Path
from typing import Dict, List, Optional

from fastapi import FastAPI, File, Header, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from tender_viability.config import config
from tender_viability.errors import InvalidTenantScope
from tender_viability.extraction import CompletionService, LlamaCompletionService
from tender_viability.embeddings import Embedder, build_embedder
from tender_viability.ingestion import remove_certificate, source_id_for, sync_certificates
from tender_viability.jobs import JobRegistry
from tender_viability.main import TenderViabilityPipeline
from tender_viability.schemas import ComplianceChecklist
from tender_viability.stores import StoreBundle, build_store_bundle

logger = logging.getLogger(__name__)

app = FastAPI(title="TenderViability")
app.add_middleware(CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_methods=["*"], allow_headers=["*"])

registry = JobRegistry()
_cancel_events: Dict[str, threading.Event] = {}
# Shared collaborators, built on first use. configure() swaps them (tests).
_services: Dict[str, object] = {}
_services_lock = threading.RLock()


def configure(completion: Optional[CompletionService] = None,
              stores: Optional[StoreBundle] = None,
              embedder: Optional[Embedder] = None,
              checklist: Optional[ComplianceChecklist] = None):
    with _services_lock:
        _services.clear()
        _services.update(completion=completion, stores=stores, embedder=embedder, checklist=checklist)


def _service(name: str):
    with _services_lock:
        if name not in _services:
            if name == "embedder":
                _services[name] = build_embedder()
            elif name == "stores":
                _services[name] = build_store_bundle(_service("embedder"))
            elif name == "completion":
                _services[name] = LlamaCompletionService()
        return _services.get(name)


def _tenant(x_tenant_id: Optional[str]) -> str:
    if x_tenant_id is None or not x_tenant_id.strip():
        raise InvalidTenantScope("X-Tenant-Id header is required.")
    return x_tenant_id.strip()


@app.exception_handler(InvalidTenantScope)
async def _invalid_tenant(_request, exc: InvalidTenantScope):
    return JSONResponse(status_code=400, content={"error": str(exc)})


def _own_job(job_id: str, tenant_id: str):
    job = registry.get(job_id)
    if job is None or str(job.tenant_id) != tenant_id:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


def _dir(path: str) -> Path:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


async def _save_upload(upload: UploadFile, dest_dir: Path) -> str:
    dest = dest_dir / Path(upload.filename or "upload.pdf").name
    dest.write_bytes(await upload.read())
    return str(dest)


@app.post("/analyze")
async def analyze(bid: UploadFile = File(...),
                  annexes: List[UploadFile] = File(default=[]),
                  x_tenant_id: Optional[str] = Header(None)):
    tenant_id = _tenant(x_tenant_id)
    job = registry.create("analysis", tenant_id=tenant_id, message="Na fila")
    job_dir = _dir(config.store.upload_dir) / job.job_id
    job_dir.mkdir(parents=True, exist_ok=True)

    bid_path = await _save_upload(bid, job_dir)
    annex_paths = []
    for upload in annexes:
        annex_dir = job_dir / "anexos" / uuid.uuid4().hex[:8]
        annex_dir.mkdir(parents=True, exist_ok=True)
        annex_paths.append(await _save_upload(upload, annex_dir))

    cancel = threading.Event()
    _cancel_events[job.job_id] = cancel
    thread = threading.Thread(
        target=run_analysis_sync,
        args=(job.job_id, tenant_id, bid_path, annex_paths, cancel),
        daemon=True,
    )
    thread.start()
    return {"job_id": job.job_id, "filename": bid.filename, "annexes": len(annex_paths)}


def run_analysis_sync(job_id: str, tenant_id: str, bid_path: str,
                      annex_paths: List[str], cancel: threading.Event):
    try:
        pipeline = TenderViabilityPipeline(
            completion=_service("completion"),
            stores=_service("stores"),
            embedder=_service("embedder"),
            tenant_id=tenant_id,
            checklist=_services.get("checklist"),
        )
        output_path = str(_dir(config.store.output_dir) / f"{job_id}.md")
        result = pipeline.run(
            bid_path, annex_paths, output_path,
            cancel_event=cancel,
            progress=lambda pct, msg: registry.update_progress(job_id, pct, msg),
        )
        registry.complete(
            job_id,
            result=result.model_dump(mode="json"),
            message=f"{result.recommendation.badge} {result.recommendation.label}",
        )
    except Exception as e:
        logger.exception("Analysis job %s failed", job_id)
        registry.fail(job_id, f"{type(e).__name__}: {e}")
    finally:
        _cancel_events.pop(job_id, None)
        shutil.rmtree(Path(bid_path).parent, ignore_errors=True)


@app.post("/certificates/sync")
def sync(force: bool = False, x_tenant_id: Optional[str] = Header(None)):
    tenant_id = _tenant(x_tenant_id)
    job = registry.create("sync", tenant_id=tenant_id, message="Sincronizando CATs")
    cancel = threading.Event()
    _cancel_events[job.job_id] = cancel
    thread = threading.Thread(
        target=run_sync_sync, args=(job.job_id, tenant_id, force, cancel), daemon=True,
    )
    thread.start()
    return {"job_id": job.job_id}


def run_sync_sync(job_id: str, tenant_id: str, force: bool, cancel: threading.Event):
    try:
        report = sync_certificates(
            _service("stores"), tenant_id, force=force, cancel_event=cancel,
            progress=lambda i, n, src: registry.update_progress(job_id, int(100 * i / max(1, n)), src),
        )
        registry.complete(job_id, result={
            "ingested": report.ingested, "skipped": report.skipped,
            "removed": report.removed, "failed": report.failed,
        }, message=f"{len(report.ingested)} CATs processadas")
    except Exception as e:
        logger.exception("Sync job %s failed", job_id)
        registry.fail(job_id, f"{type(e).__name__}: {e}")
    finally:
        _cancel_events.pop(job_id, None)


@app.delete("/certificates/{manager}/{file_name}")
def delete_certificate(manager: str, file_name: str, x_tenant_id: Optional[str] = Header(None)):
    tenant_id = _tenant(x_tenant_id)
    source_id = source_id_for(manager, file_name)
    if not remove_certificate(_service("stores"), tenant_id, source_id):
        raise HTTPException(status_code=404, detail="Certificate not found")
    return {"deleted": source_id}


@app.get("/jobs")
def list_jobs(x_tenant_id: Optional[str] = Header(None)):
    tenant_id = _tenant(x_tenant_id)
    return [j.model_dump(mode="json", exclude={"result"}) for j in registry.list(tenant_id)]


@app.get("/jobs/{job_id}")
def get_status(job_id: str, x_tenant_id: Optional[str] = Header(None)):
    job = _own_job(job_id, _tenant(x_tenant_id))
    return job.model_dump(mode="json", exclude={"result"})


@app.get("/jobs/{job_id}/result")
def get_result(job_id: str, x_tenant_id: Optional[str] = Header(None)):
    job = _own_job(job_id, _tenant(x_tenant_id))
    if job.status != "completed":
        raise HTTPException(status_code=409, detail=f"Job is {job.status}")
    return job.result


@app.get("/jobs/{job_id}/report", response_class=PlainTextResponse)
def get_report(job_id: str, x_tenant_id: Optional[str] = Header(None)):
    job = _own_job(job_id, _tenant(x_tenant_id))
    if job.status != "completed" or not job.result or "report_markdown" not in job.result:
        raise HTTPException(status_code=409, detail=f"Job is {job.status}")
    return job.result["report_markdown"]


@app.post("/jobs/{job_id}/cancel")
def cancel_job(job_id: str, x_tenant_id: Optional[str] = Header(None)):
    _own_job(job_id, _tenant(x_tenant_id))
    event = _cancel_events.get(job_id)
    if event is None:
        raise HTTPException(status_code=409, detail="Job is not running")
    event.set()
    return {"cancelled": job_id}
