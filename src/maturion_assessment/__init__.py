"""Maturion maturity assessment core service.

Scores organizational maturity assessments against the threshold/penalty
algorithm and routes AI requests through tiered knowledge sources before any
language-model call.
"""

__version__ = "0.1.0"
