"""
test_metadata.py — Field extraction from CAT texts and file names.

Run with:
    python tests/test_metadata.py
    python -m pytest tests/test_metadata.py -v
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

# Make sure the project root is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from tender_viability.metadata import extract_metadata, parse_filename_hints, pick_reasonable_year
from tender_viability.schemas import CertificateDocument, FileHints, max_reasonable_year

from samples import LIGHTING_CAT_NAME, LIGHTING_CAT_TEXT, WATER_CAT_NAME, WATER_CAT_TEXT

logging.basicConfig(level=logging.INFO, format="%(levelname)s | %(message)s")
logger = logging.getLogger(__name__)


def test_lighting_certificate_fields():
    """Every field of a well-formed CREA-PE certificate."""
    doc = extract_metadata(LIGHTING_CAT_NAME, LIGHTING_CAT_TEXT, "jose/" + LIGHTING_CAT_NAME)
    assert doc.source_id == "jose/" + LIGHTING_CAT_NAME
    assert doc.certificate_number == "1234/2021"
    assert doc.issuing_body == "Prefeitura Municipal de Caruaru"
    assert doc.year == 2021
    assert doc.has_license_mark
    assert doc.has_council_registration
    assert doc.mentions_maintenance
    assert not doc.mentions_construction
    assert doc.professional_name == "JOSÉ DA SILVA"
    assert doc.professional_title == "Engenheiro Eletricista"
    assert doc.completion_status == "completed"
    assert doc.scope_summary == (
        "Execução de manutenção do parque de iluminação pública com substituição de 1200 luminárias LED"
    )
    assert doc.domain_tags == ["eletrica"]
    print("  ✓ test_lighting_certificate_fields")


def test_acronym_issuing_body():
    """Utilities are recognised by acronym."""
    doc = extract_metadata(WATER_CAT_NAME, WATER_CAT_TEXT)
    assert doc.issuing_body == "COMPESA"
    assert doc.year == 2019
    assert doc.professional_name == "MARIA SOUZA"
    assert doc.mentions_construction
    assert doc.source_id == WATER_CAT_NAME
    print("  ✓ test_acronym_issuing_body")


def test_legal_citation_year_ignored():
    """1966 (Lei 5.194) is never a certificate year."""
    assert pick_reasonable_year("Conforme Lei nº 5.194, de 1966.") is None
    assert pick_reasonable_year("Lei de 1966, atestado de 2018 e obra de 2019") == 2019
    assert pick_reasonable_year(f"Vigência até {max_reasonable_year() + 5}") is None
    assert pick_reasonable_year(None) is None
    print("  ✓ test_legal_citation_year_ignored")


def test_filename_hints():
    """Number, year and domains from the file name alone."""
    hints = parse_filename_hints(LIGHTING_CAT_NAME)
    assert hints.certificate_number == "1234-2021"
    assert hints.year == 2021
    assert hints.domains == ["eletrica"]
    assert hints.issuing_body is None

    hints = parse_filename_hints("CAT_77-2018_CELPE.pdf")
    assert hints.issuing_body == "CELPE"
    print("  ✓ test_filename_hints")


def test_filename_fallbacks():
    """Text without data falls back to file-name hints."""
    doc = extract_metadata("CAT_77-2018_CELPE.pdf", "texto sem dados")
    assert doc.certificate_number == "77-2018"
    assert doc.issuing_body == "CELPE"
    assert doc.year == 2018
    assert doc.completion_status == "unknown"
    assert doc.professional_name is None
    print("  ✓ test_filename_fallbacks")


def test_unreasonable_years_dropped():
    """Validators drop years outside [1990, next year]."""
    assert CertificateDocument(source_id="x", file_name="x.pdf", year=1966).year is None
    assert FileHints(year=1800).year is None
    doc = CertificateDocument(source_id="x", file_name="x.pdf", file_hints=FileHints(year=2020))
    assert doc.effective_year == 2020
    print("  ✓ test_unreasonable_years_dropped")


def test_empty_input():
    """Missing text and name still produce a document."""
    doc = extract_metadata(None, None)
    assert doc.source_id == "sem-nome"
    assert doc.raw_text == ""
    assert doc.certificate_number is None
    assert doc.scope_summary == ""
    print("  ✓ test_empty_input")


def test_in_progress_status():
    doc = extract_metadata("CAT_1.pdf", "Obra em andamento no município.")
    assert doc.completion_status == "in_progress"
    print("  ✓ test_in_progress_status")


def run_all_tests():
    """Run all tests and report results."""
    print("\n" + "=" * 60)
    print("  TenderViability — Metadata Tests")
    print("=" * 60 + "\n")

    tests = [
        test_lighting_certificate_fields,
        test_acronym_issuing_body,
        test_legal_citation_year_ignored,
        test_filename_hints,
        test_filename_fallbacks,
        test_unreasonable_years_dropped,
        test_empty_input,
        test_in_progress_status,
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
