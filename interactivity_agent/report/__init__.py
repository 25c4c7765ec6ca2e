"""Report scoring utilities."""

from interactivity_agent.report.generator import (
    arithmetic_mean,
    generate_report_json,
    get_aggregations,
    normalize_audit_score,
    serialize_report
)

__all__ = [
    "arithmetic_mean",
    "generate_report_json",
    "get_aggregations",
    "normalize_audit_score",
    "serialize_report"
]
