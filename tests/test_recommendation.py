"""
test_recommendation.py — Bucket scoring, weighted recommendation, ADMIN checklist.

The thresholds and weights asserted here are the production ones from
config.recommendation (60/40, 0.75 / 0.55, aligned floor 0.70).

Run with:
    python tests/test_recommendation.py
    python -m pytest tests/test_recommendation.py -v
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

# Make sure the project root is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from tender_viability.compliance import evaluate_admin_requirement
from tender_viability.recommendation import (
    LABEL_CONDITIONAL,
    LABEL_NOT_RECOMMENDED,
    LABEL_RECOMMENDED,
    build_recommendation,
    status_from_text,
    summarize,
)
from tender_viability.schemas import BucketSummary, ComplianceChecklist, RequirementOutcome

logging.basicConfig(level=logging.INFO, format="%(levelname)s | %(message)s")
logger = logging.getLogger(__name__)


def _outcomes(kind, *statuses):
    return [RequirementOutcome(requirement=f"req {i}", kind=kind, status=s) for i, s in enumerate(statuses)]


def _close(a, b):
    return abs(a - b) < 1e-9


ALL_ADMIN_OK = summarize(_outcomes("ADMIN", "OK"))


def test_summarize_counts_partial_as_half():
    """(ok + 0.5 * partial) / total."""
    s = summarize(_outcomes("TECH", "OK", "PARTIAL", "NONE"))
    assert (s.ok, s.partial, s.none, s.total) == (1, 1, 1, 3)
    assert _close(s.score, 0.5)
    empty = summarize([])
    assert empty.total == 0 and empty.score == 0.0
    print("  ✓ test_summarize_counts_partial_as_half")


def test_no_technical_requirements_aligned():
    """Zero TECH items + an aligned CAT counts as one met technical item."""
    rec = build_recommendation(BucketSummary(), ALL_ADMIN_OK, True)
    assert rec.technical.total == 1 and rec.technical.ok == 1
    assert _close(rec.technical.score, 1.0)
    assert _close(rec.global_score, 1.0)
    assert rec.label == LABEL_RECOMMENDED
    assert rec.badge == "🟢"
    print("  ✓ test_no_technical_requirements_aligned")


def test_no_technical_requirements_unaligned():
    """Zero TECH items and no aligned CAT → technical 0."""
    rec = build_recommendation(BucketSummary(), ALL_ADMIN_OK, False)
    assert rec.technical.none == 1
    assert _close(rec.global_score, 0.4)
    assert rec.label == LABEL_NOT_RECOMMENDED
    print("  ✓ test_no_technical_requirements_unaligned")


def test_aligned_floor():
    """An aligned CAT lifts the technical score to 0.70 without touching the input."""
    tech = summarize(_outcomes("TECH", "PARTIAL", "NONE"))
    assert _close(tech.score, 0.25)
    rec = build_recommendation(tech, ALL_ADMIN_OK, True)
    assert _close(rec.technical.score, 0.70)
    assert _close(rec.global_score, 0.82)
    assert rec.label == LABEL_RECOMMENDED
    assert _close(tech.score, 0.25)
    print("  ✓ test_aligned_floor")


def test_floor_never_lowers():
    """The floor is a minimum, not a cap."""
    tech = summarize(_outcomes("TECH", "OK", "OK"))
    rec = build_recommendation(tech, ALL_ADMIN_OK, True)
    assert _close(rec.technical.score, 1.0)
    print("  ✓ test_floor_never_lowers")


def test_conditional_band():
    """0.5 technical, full documentation, no aligned CAT → 0.70 conditional."""
    tech = summarize(_outcomes("TECH", "OK", "NONE"))
    rec = build_recommendation(tech, ALL_ADMIN_OK, False)
    assert _close(rec.global_score, 0.70)
    assert rec.label == LABEL_CONDITIONAL
    assert rec.badge == "🟡"
    assert "**Global (60/40): 70%**" in rec.rationale
    print("  ✓ test_conditional_band")


def test_nothing_met():
    """All NONE → not recommended."""
    rec = build_recommendation(
        summarize(_outcomes("TECH", "NONE")),
        summarize(_outcomes("ADMIN", "NONE", "NONE")),
        False,
    )
    assert rec.global_score == 0.0
    assert rec.label == LABEL_NOT_RECOMMENDED
    assert rec.badge == "🔴"
    print("  ✓ test_nothing_met")


def test_status_from_text():
    """Negative wording is checked before the positive one it contains."""
    assert status_from_text("**NÃO ATENDIDO** — sem evidência.") == "NONE"
    assert status_from_text("**ATENDIDO PARCIALMENTE** — falta a ART.") == "PARTIAL"
    assert status_from_text("🟢 ATENDIDO.") == "OK"
    assert status_from_text("**Atendido** conforme CAT") == "OK"
    assert status_from_text("Sem conclusão possível.") is None
    assert status_from_text(None) is None
    print("  ✓ test_status_from_text")


# ── Compliance checklist ─────────────────────────────────────────────────


def test_checklist_flag_met():
    """A mapped item with its flag set is met."""
    checklist = ComplianceChecklist(fgts_regular=True)
    outcome = evaluate_admin_requirement("Prova de regularidade com o FGTS (CRF)", checklist)
    assert outcome.status == "OK"
    assert outcome.kind == "ADMIN"
    assert "**ATENDIDO**" in outcome.justification
    print("  ✓ test_checklist_flag_met")


def test_checklist_flag_missing():
    """A mapped item whose flag is off is not met."""
    outcome = evaluate_admin_requirement("Certidão negativa de débitos trabalhistas (CNDT).", ComplianceChecklist())
    assert outcome.status == "NONE"
    assert "**NÃO ATENDIDO**" in outcome.justification
    print("  ✓ test_checklist_flag_missing")


def test_checklist_unmapped_is_partial():
    """Wording no rule recognises is PARTIAL, never NONE."""
    outcome = evaluate_admin_requirement("Declaração de que não emprega menor", ComplianceChecklist())
    assert outcome.status == "PARTIAL"
    assert "**ATENDIDO PARCIALMENTE**" in outcome.justification
    print("  ✓ test_checklist_unmapped_is_partial")


def run_all_tests():
    """Run all tests and report results."""
    print("\n" + "=" * 60)
    print("  TenderViability — Recommendation Tests")
    print("=" * 60 + "\n")

    tests = [
        test_summarize_counts_partial_as_half,
        test_no_technical_requirements_aligned,
        test_no_technical_requirements_unaligned,
        test_aligned_floor,
        test_floor_never_lowers,
        test_conditional_band,
        test_nothing_met,
        test_status_from_text,
        # Compliance checklist
        test_checklist_flag_met,
        test_checklist_flag_missing,
        test_checklist_unmapped_is_partial,
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
