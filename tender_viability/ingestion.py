"""
ingestion.py — Text extraction and certificate (CAT) ingestion.

Two jobs live here:

1. extract_text(): get plain text out of whatever the user uploads. PDF
   via pdfplumber, DOCX via python-docx (paragraphs AND tables; CAT
   scans converted to DOCX keep the certificate number inside a table
   cell more often than not), TXT/MD read as UTF-8. Scanned PDFs come
   back nearly empty; OCR is somebody else's service, we just log it.

2. Certificate ingestion into the persistent stores. The on-disk layout
   the sync walks is:

       <certificates_root>/<tenant>/<manager>/<file>

   where <manager> is the folder of the professional who holds the CAT.
   source_id is "<manager>/<file>", which is also how the RT suggester
   recovers a professional's name when the CAT text does not carry one.
   One StoredCertificate per (tenant, source_id); its chunks are replaced
   wholesale on every re-ingest so a re-scanned CAT never leaves stale
   chunks behind.
"""

from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import pdfplumber

from tender_viability.chunking import build_chunks
from tender_viability.config import config
from tender_viability.errors import AnalysisCancelled, InvalidTenantScope
from tender_viability.schemas import LocalFile, StoredCertificate, TenantId
from tender_viability.stores import StoreBundle, TenantLike, canonical_tenant

logger = logging.getLogger(__name__)

ProgressHook = Callable[[int, int, str], None]


# ── Text extraction ──────────────────────────────────────────────────────


def _validate_file(path: Path) -> None:
    """Fail fast on missing, oversized or unsupported files."""
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    size_mb = path.stat().st_size / (1024 * 1024)
    if size_mb > config.max_file_size_mb:
        raise ValueError(
            f"File too large ({size_mb:.1f} MB). Max: {config.max_file_size_mb} MB"
        )

    if path.suffix.lower() not in config.supported_formats:
        raise ValueError(
            f"Unsupported format '{path.suffix}'. "
            f"Supported: {', '.join(config.supported_formats)}"
        )


def _extract_pdf(path: Path) -> str:
    pages: List[str] = []
    with pdfplumber.open(str(path)) as pdf:
        for page in pdf.pages:
            pages.append(page.extract_text() or "")
    text = "\n".join(pages)
    if pages and len(text.strip()) < 50 * len(pages):
        logger.warning("%s: %d pages but only %d chars, probably scanned", path.name, len(pages), len(text.strip()))
    logger.info("Extracted PDF: %s (%d pages, %d chars)", path.name, len(pages), len(text))
    return text


def _extract_docx(path: Path) -> str:
    from docx import Document

    doc = Document(str(path))
    parts: List[str] = [p.text for p in doc.paragraphs if p.text.strip()]
    for table in doc.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
            if cells:
                parts.append(" | ".join(cells))
    logger.info("Extracted DOCX: %s (%d text blocks)", path.name, len(parts))
    return "\n".join(parts)


def extract_text(file_path) -> str:
    """
    Plain text of one document.

    Raises:
        FileNotFoundError, ValueError: see _validate_file().
    """
    path = Path(file_path)
    _validate_file(path)

    suffix = path.suffix.lower()
    if suffix == ".pdf":
        return _extract_pdf(path)
    if suffix == ".docx":
        return _extract_docx(path)
    return path.read_text(encoding="utf-8", errors="replace")


def read_local_files(paths: Sequence, max_workers: Optional[int] = None) -> List[LocalFile]:
    """
    Extract every path concurrently and wait for the whole batch.

    A file that cannot be read becomes an empty LocalFile and a warning;
    one corrupt annex should not sink the analysis.
    """
    if not paths:
        return []

    def _one(p) -> LocalFile:
        try:
            return LocalFile(source=Path(p).name, text=extract_text(p))
        except Exception as exc:
            # pdfminer raises its own hierarchy for corrupt files
            logger.warning("Could not read %s: %s", p, exc)
            return LocalFile(source=Path(p).name, text="")

    workers = max(1, min(max_workers or config.max_workers, len(paths)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(_one, paths))


# ── Certificate ingestion ────────────────────────────────────────────────


def _require_tenant(tenant_id: Optional[TenantLike]) -> TenantId:
    if tenant_id is None or (isinstance(tenant_id, str) and not tenant_id.strip()):
        raise InvalidTenantScope("A tenant id is required to ingest or remove certificates.")
    return canonical_tenant(tenant_id)


def _require_stores(stores: StoreBundle) -> None:
    if stores.certificate_store is None or stores.chunk_store is None:
        raise ValueError("Ingestion needs both a certificate store and a chunk store.")


def source_id_for(manager: str, file_name: str) -> str:
    return f"{manager}/{file_name}"


def ingest_certificate_file(
    stores: StoreBundle,
    tenant_id: TenantLike,
    manager: str,
    path,
    force: bool = False,
    text: Optional[str] = None,
) -> bool:
    """
    Persist one CAT and its chunks. Returns False when it was already
    stored and force is off, True when (re)ingested.
    """
    tenant_id = _require_tenant(tenant_id)
    _require_stores(stores)

    path = Path(path)
    source_id = source_id_for(manager, path.name)

    if not force and stores.certificate_store.get(tenant_id, source_id) is not None:
        logger.debug("Skipping %s (already ingested)", source_id)
        return False

    body = extract_text(path) if text is None else text
    chunks = build_chunks(tenant_id, source_id, body)
    stores.chunk_store.replace_source(tenant_id, source_id, chunks)
    stores.certificate_store.upsert(
        StoredCertificate(
            tenant_id=tenant_id,
            source_id=source_id,
            file_name=path.name,
            manager=manager,
            text=body,
            chunk_count=len(chunks),
            processed_at=datetime.now(),
        )
    )
    logger.info("Ingested %s: %d chars, %d chunks", source_id, len(body), len(chunks))
    return True


def remove_certificate(stores: StoreBundle, tenant_id: TenantLike, source_id: str) -> bool:
    """Delete a certificate and all of its chunks. True if the certificate existed."""
    tenant_id = _require_tenant(tenant_id)
    removed_chunks = stores.chunk_store.delete_source(tenant_id, source_id) if stores.chunk_store else 0
    removed = stores.certificate_store.delete(tenant_id, source_id) if stores.certificate_store else False
    logger.info("Removed %s (certificate=%s, chunks=%d)", source_id, removed, removed_chunks)
    return removed


@dataclass
class SyncReport:
    ingested: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.ingested) + len(self.skipped) + len(self.failed)


def _walk_certificates(root: Path) -> List[tuple]:
    found = []
    for manager_dir in sorted(p for p in root.iterdir() if p.is_dir()):
        for f in sorted(manager_dir.iterdir()):
            if f.is_file() and f.suffix.lower() in config.supported_formats:
                found.append((manager_dir.name, f))
    return found


def sync_certificates(
    stores: StoreBundle,
    tenant_id: TenantLike,
    root_dir=None,
    force: bool = False,
    progress: Optional[ProgressHook] = None,
    cancel_event: Optional[threading.Event] = None,
) -> SyncReport:
    """
    Bring the stores in line with the tenant's certificate folder: ingest
    new files (every file when force), drop sources whose file is gone.

    A missing folder is not an empty one: nothing is pruned and the
    stores are left untouched.
    """
    tenant_id = _require_tenant(tenant_id)
    _require_stores(stores)
    root = Path(root_dir if root_dir is not None else certificates_root_for(tenant_id))
    report = SyncReport()
    if not root.is_dir():
        logger.warning("Certificate folder %s not found; nothing synced or removed", root)
        return report
    files = _walk_certificates(root)
    logger.info("Syncing %d certificate files from %s (force=%s)", len(files), root, force)

    on_disk = set()
    for i, (manager, path) in enumerate(files, start=1):
        if cancel_event is not None and cancel_event.is_set():
            raise AnalysisCancelled("Certificate sync cancelled.")
        source_id = source_id_for(manager, path.name)
        on_disk.add(source_id)
        try:
            if ingest_certificate_file(stores, tenant_id, manager, path, force=force):
                report.ingested.append(source_id)
            else:
                report.skipped.append(source_id)
        except Exception as exc:
            logger.warning("Failed to ingest %s: %s", source_id, exc)
            report.failed.append(source_id)
        if progress is not None:
            progress(i, len(files), source_id)

    for source_id in stores.certificate_store.list_sources(tenant_id):
        if source_id not in on_disk:
            remove_certificate(stores, tenant_id, source_id)
            report.removed.append(source_id)

    logger.info(
        "Sync done: %d ingested, %d skipped, %d removed, %d failed",
        len(report.ingested), len(report.skipped), len(report.removed), len(report.failed),
    )
    return report


def certificates_root_for(tenant_id: TenantLike) -> str:
    return os.path.join(config.store.certificates_root, str(tenant_id))
