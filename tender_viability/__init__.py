"""
TenderViability — tender ("edital") viability analysis engine.

Classifies the habilitation requirements of a public tender, matches them
against a company's technical-capability certificates (CATs) and emits a
weighted participation recommendation as a Markdown report.
"""

__version__ = "1.0.0"
__author__ = "TenderViability"
