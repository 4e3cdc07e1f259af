"""Classifiers derived from cached data: finding owners and compliance."""

from .compliance import ComplianceEvaluator
from .ownership import OwnershipResolver, best_matching_rule, pattern_matches

__all__ = [
    "ComplianceEvaluator",
    "OwnershipResolver",
    "best_matching_rule",
    "pattern_matches",
]
