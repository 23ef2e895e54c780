"""
main.py — Pipeline orchestration for TenderViability.

Seven stages, timed and logged the way all our pipelines are:

  [1/7] header + object text
  [2/7] certificate retrieval (stores + uploaded annexes)
  [3/7] dedup, domain filter, alignment ranking
  [4/7] requirement extraction (LLM), portal items dropped
  [5/7] per-requirement verdicts
          TECH + aligned CATs  → straight from the top certificates
          ADMIN + checklist    → compliance rules, no LLM call
          everything else      → evidence search + LLM verdict
  [6/7] weighted recommendation + RT suggestion
  [7/7] executive summary + Markdown report

Only two things stop an analysis: the requirement list not being a JSON
array (MalformedModelOutput) and the LLM staying down past its retry
budget (ServiceUnavailable). A flaky store, an unreadable annex or a
failed executive summary each cost us a section, not the report.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence

from tender_viability.classifier import classify_requirement
from tender_viability.compliance import evaluate_admin_requirement
from tender_viability.config import config
from tender_viability.embeddings import Embedder, build_embedder
from tender_viability.errors import AnalysisCancelled, TenderViabilityError
from tender_viability.extraction import (
    CompletionService,
    LlamaCompletionService,
    analyze_requirement,
    extract_requirements,
    filter_platform_items,
    generate_executive_summary,
)
from tender_viability.ingestion import extract_text, read_local_files
from tender_viability.professional import compare_requirement_vs_certificate, suggest_best_professional
from tender_viability.recommendation import build_recommendation, status_from_text, summarize
from tender_viability.report import build_report, certificate_evidence_tags, certificate_label
from tender_viability.retrieval import EvidenceSearcher, RetrievalOptions, find_matches
from tender_viability.schemas import (
    AnalysisResult,
    ComplianceChecklist,
    LocalFile,
    RankedCandidate,
    RequirementOutcome,
)
from tender_viability.scoring import rank_candidates, select_aligned, unique_by_cat
from tender_viability.stores import StoreBundle, TenantLike, build_store_bundle
from tender_viability.taxonomy import taxonomy
from tender_viability.tender_header import parse_bid_header

logger = logging.getLogger("tender_viability")

ProgressHook = Callable[[int, str], None]

SUMMARY_FALLBACK = "- (Ocorreu um erro ao gerar o sumário executivo)"
PARTIAL_ADHERENCE_NOTE = (
    "> Observação: CATs localizadas com aderência parcial; "
    "ideal substituir por CATs do mesmo escopo do edital."
)


def _check_cancel(cancel_event: Optional[threading.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise AnalysisCancelled("Analysis cancelled by the caller.")


class TenderViabilityPipeline:
    """
    End-to-end viability analysis.

    Usage:
        pipeline = TenderViabilityPipeline(tenant_id=42)
        result = pipeline.run("edital.pdf", ["anexo_cat.pdf"], "relatorio.md")
        print(result.recommendation.label)

    Every collaborator is injectable; the tests pass a fake completion
    service and in-memory stores.
    """

    def __init__(
        self,
        completion: Optional[CompletionService] = None,
        stores: Optional[StoreBundle] = None,
        embedder: Optional[Embedder] = None,
        tenant_id: Optional[TenantLike] = None,
        checklist: Optional[ComplianceChecklist] = None,
    ):
        self.completion = completion or LlamaCompletionService()
        self.stores = stores or StoreBundle()
        self.embedder = embedder
        self.tenant_id = tenant_id
        self.checklist = checklist

    def analyze(
        self,
        bid_text: str,
        local_files: Sequence[LocalFile] = (),
        cancel_event: Optional[threading.Event] = None,
        progress: Optional[ProgressHook] = None,
    ) -> AnalysisResult:
        """Analyse one bid's text against the tenant's certificates and the uploaded annexes."""
        overall_start = time.time()
        report_progress = progress or (lambda pct, msg: None)

        bid_text = bid_text or ""
        if len(bid_text) > config.max_bid_chars:
            logger.info("Bid text truncated from %d to %d chars", len(bid_text), config.max_bid_chars)
            bid_text = bid_text[:config.max_bid_chars]
        local_files = [f for f in local_files if f.text.strip()]

        # ── Stage 1: Header ──────────────────────────────────────
        t0 = time.time()
        logger.info("[1/7] Parsing bid header ...")
        header = parse_bid_header(bid_text)
        object_text = header.object_text or bid_text
        object_domains = sorted(taxonomy.signatures_for(object_text))
        logger.info("  ✓ object domains %s in %.1fs", object_domains or "[none]", time.time() - t0)
        report_progress(5, "Cabeçalho do edital")
        _check_cancel(cancel_event)

        # ── Stage 2: Certificate retrieval ───────────────────────
        t0 = time.time()
        logger.info("[2/7] Retrieving candidate certificates ...")
        candidates = find_matches(
            self.stores,
            object_text,
            limit=config.retrieval.default_limit,
            local_files=local_files,
            options=RetrievalOptions(tenant_id=self.tenant_id),
        )
        logger.info("  ✓ %d candidates in %.1fs", len(candidates), time.time() - t0)
        report_progress(20, "Busca de CATs")
        _check_cancel(cancel_event)

        # ── Stage 3: Ranking ─────────────────────────────────────
        t0 = time.time()
        logger.info("[3/7] Ranking certificates against the object ...")
        ranked = rank_candidates(unique_by_cat(candidates), object_text, header.lot_text)
        top, domain_aligned = select_aligned(ranked, object_text)
        logger.info("  ✓ %d ranked, %d selected (aligned=%s) in %.1fs",
                    len(ranked), len(top), domain_aligned, time.time() - t0)
        report_progress(30, "Ranking de CATs")
        _check_cancel(cancel_event)

        # ── Stage 4: Requirements ────────────────────────────────
        t0 = time.time()
        logger.info("[4/7] Extracting requirements ...")
        all_requirements = extract_requirements(bid_text, self.completion)
        requirements = filter_platform_items(all_requirements)
        logger.info("  ✓ %d requirements (%d after filtering) in %.1fs",
                    len(all_requirements), len(requirements), time.time() - t0)
        report_progress(40, "Requisitos extraídos")
        _check_cancel(cancel_event)

        # ── Stage 5: Verdicts ────────────────────────────────────
        t0 = time.time()
        logger.info("[5/7] Evaluating %d requirements ...", len(requirements))
        searcher: Optional[EvidenceSearcher] = None
        outcomes: List[RequirementOutcome] = []
        for i, requirement in enumerate(requirements, start=1):
            _check_cancel(cancel_event)
            kind = classify_requirement(requirement)

            if kind == "TECH" and top:
                outcomes.append(self._certificate_outcome(requirement, top, domain_aligned))
            elif kind == "ADMIN" and self.checklist is not None:
                outcomes.append(evaluate_admin_requirement(requirement, self.checklist))
            else:
                if searcher is None:
                    searcher = EvidenceSearcher(
                        local_files,
                        embedder=self.embedder,
                        chunk_store=self.stores.chunk_store,
                        tenant_id=self.tenant_id,
                    )
                evidence = searcher.search(requirement)
                text = analyze_requirement(requirement, evidence, self.completion)
                outcomes.append(RequirementOutcome(
                    requirement=requirement,
                    kind=kind,
                    status=status_from_text(text) or "NONE",
                    justification=text,
                ))
            report_progress(40 + int(40 * i / max(1, len(requirements))), f"Requisito {i}/{len(requirements)}")
        logger.info("  ✓ %d verdicts in %.1fs", len(outcomes), time.time() - t0)

        # ── Stage 6: Recommendation + RT ─────────────────────────
        t0 = time.time()
        logger.info("[6/7] Building recommendation ...")
        technical = summarize(o for o in outcomes if o.kind == "TECH")
        administrative = summarize(o for o in outcomes if o.kind == "ADMIN")
        recommendation = build_recommendation(technical, administrative, domain_aligned)

        top_docs = [r.certificate for r in top]
        professional = suggest_best_professional(top_docs, object_text)
        comparison: List[str] = []
        if professional is not None:
            chosen = next((c for c in top_docs if c.file_name == professional.source_file), top_docs[0])
            comparison = compare_requirement_vs_certificate(
                "\n".join([header.object_text, *all_requirements]), chosen.raw_text,
            )
        logger.info("  ✓ %s in %.1fs", recommendation.label, time.time() - t0)
        report_progress(85, "Recomendação")
        _check_cancel(cancel_event)

        # ── Stage 7: Summary + report ────────────────────────────
        t0 = time.time()
        logger.info("[7/7] Executive summary and report ...")
        try:
            summary = generate_executive_summary(
                [o.justification for o in outcomes], object_text, self.completion,
            )
        except AnalysisCancelled:
            raise
        except Exception as exc:
            # The report is still worth having without the summary
            logger.warning("Executive summary failed: %s", exc)
            summary = SUMMARY_FALLBACK

        result = AnalysisResult(
            header=header,
            object_text=object_text,
            object_domains=object_domains,
            requirements=requirements,
            outcomes=outcomes,
            top_certificates=top,
            domain_aligned=domain_aligned,
            recommendation=recommendation,
            professional=professional,
            capability_comparison=comparison,
            executive_summary=summary,
        )
        result.report_markdown = build_report(result)
        logger.info("  ✓ Report (%d chars) in %.1fs", len(result.report_markdown), time.time() - t0)
        report_progress(100, "Relatório pronto")

        logger.info("=" * 60)
        logger.info("DONE in %.1fs | %d requirements | %s | global %.0f%%",
                    time.time() - overall_start, len(requirements),
                    recommendation.label, recommendation.global_score * 100)
        logger.info("=" * 60)
        return result

    @staticmethod
    def _certificate_outcome(
        requirement: str,
        top: Sequence[RankedCandidate],
        domain_aligned: bool,
    ) -> RequirementOutcome:
        bullets = "\n".join(
            f"- {certificate_label(r.certificate)} — {certificate_evidence_tags(r.certificate)}" for r in top
        )
        status_line = "🟢 ATENDIDO." if domain_aligned else "🟡 ATENDIDO PARCIALMENTE."
        text = f"Requisito: {requirement}\n\n{status_line}\n\nA qualificação técnica é suportada por:\n{bullets}"
        if not domain_aligned:
            text += f"\n\n{PARTIAL_ADHERENCE_NOTE}"
        return RequirementOutcome(
            requirement=requirement,
            kind="TECH",
            status="OK" if domain_aligned else "PARTIAL",
            justification=text,
        )

    def run(
        self,
        bid_path: str,
        annex_paths: Sequence[str] = (),
        output_path: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
        progress: Optional[ProgressHook] = None,
    ) -> AnalysisResult:
        """
        Extract text from the bid and its annexes (concurrently), analyse,
        and optionally write the Markdown report to output_path.
        """
        logger.info("=" * 60)
        logger.info("TenderViability — Processing: %s (+%d annexes)", os.path.basename(bid_path), len(annex_paths))
        logger.info("=" * 60)

        with ThreadPoolExecutor(max_workers=1) as pool:
            bid_future = pool.submit(extract_text, bid_path)
            local_files = read_local_files(list(annex_paths))
            bid_text = bid_future.result()

        result = self.analyze(bid_text, local_files, cancel_event=cancel_event, progress=progress)

        if output_path:
            os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
            with open(output_path, "w", encoding="utf-8") as f:
                f.write(result.report_markdown)
            logger.info("Report written to: %s", output_path)
        return result


def _load_checklist(path: Optional[str]) -> Optional[ComplianceChecklist]:
    if not path:
        return None
    with open(path, encoding="utf-8") as f:
        return ComplianceChecklist.model_validate(json.load(f))


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="tender_viability",
        description="TenderViability — Score a bid (edital) against the company's technical certificates",
    )
    parser.add_argument("bid", help="Path to the bid document (PDF, DOCX, TXT, MD)")
    parser.add_argument("--annex", "-a", action="append", default=[],
                        help="Annex / certificate file uploaded with the bid (repeatable)")
    parser.add_argument("--output", "-o", default=None, help="Markdown report path (default: stdout)")
    parser.add_argument("--tenant", "-t", default=None,
                        help="Tenant id; enables the persistent certificate stores")
    parser.add_argument("--checklist", default=None, help="Company compliance checklist (JSON)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")

    args = parser.parse_args()

    level = logging.DEBUG if args.verbose else getattr(logging, config.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )

    embedder = build_embedder()
    stores = build_store_bundle(embedder) if args.tenant else StoreBundle()

    try:
        pipeline = TenderViabilityPipeline(
            stores=stores,
            embedder=embedder,
            tenant_id=args.tenant,
            checklist=_load_checklist(args.checklist),
        )
        result = pipeline.run(args.bid, args.annex, args.output)
        if args.output is None:
            print(result.report_markdown)
    except FileNotFoundError as exc:
        logger.error("File not found: %s", exc)
        sys.exit(1)
    except ValueError as exc:
        logger.error("Invalid input: %s", exc)
        sys.exit(1)
    except TenderViabilityError as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        sys.exit(2)


if __name__ == "__main__":
    main()
