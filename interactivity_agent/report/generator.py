"""Report scoring: weighted audit and category scores plus the legacy view."""

from __future__ import annotations

import json
import math
from typing import Any, Iterable, Mapping


def _to_number(value: Any) -> float:
    """Coerce value to a finite float, 0 for anything that is not numeric."""
    if value is None:
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return number


def arithmetic_mean(items: Iterable[Mapping[str, Any]]) -> float:
    """
    Weighted arithmetic mean of the score of each item.

    Missing or non-numeric scores and weights count as 0; a zero total
    weight gives 0 rather than an error.
    """
    total_weight = 0.0
    total = 0.0
    for item in items:
        score = _to_number(item.get("score"))
        weight = _to_number(item.get("weight"))
        total_weight += weight
        total += score * weight

    if total_weight == 0:
        return 0
    mean = total / total_weight
    return mean if math.isfinite(mean) else 0


def normalize_audit_score(result: Mapping[str, Any] | None) -> float:
    """Map an audit result's score onto 0-100: booleans become 100/0."""
    if not isinstance(result, Mapping):
        return 0
    score = result.get("score")
    if isinstance(score, bool):
        return 100 if score else 0
    return _to_number(score)


def get_aggregations(categories: list[dict]) -> list[dict]:
    """Re-shape scored categories into the aggregation list older reports read."""
    aggregations = []
    for category in categories:
        name = category.get("name")
        description = category.get("description")
        total = category["score"] / 100
        aggregations.append(
            {
                "name": name,
                "description": description,
                "categorizable": False,
                "scored": category.get("id") == "pwa",
                "total": total,
                "score": [
                    {
                        "name": name,
                        "description": description,
                        "overall": total,
                        "subItems": [audit["result"] for audit in category["audits"]]
                    }
                ]
            }
        )
    return aggregations


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def generate_report_json(config: Mapping[str, Any], results_by_audit_id: Mapping[str, Any]) -> dict:
    """
    Score every configured category and the report as a whole.

    Args:
        config: {"categories": {id: {"name", "description", "weight",
            "audits": [{"id", "weight"}]}}}
        results_by_audit_id: Raw audit results keyed by audit id

    Returns:
        {"score", "categories", "aggregations"}; config is left untouched.
        Malformed categories, audit entries and results count as empty.
    """
    results_by_audit_id = _mapping(results_by_audit_id)
    categories = []
    for category_id, category in _mapping(_mapping(config).get("categories")).items():
        category = _mapping(category)
        audit_entries = category.get("audits")
        if not isinstance(audit_entries, (list, tuple)):
            audit_entries = []

        audits = []
        for audit in audit_entries:
            audit = _mapping(audit)
            audit_id = audit.get("id")
            result = results_by_audit_id.get(audit_id) if isinstance(audit_id, str) else None
            if not isinstance(result, Mapping):
                result = {}
            audits.append({**audit, "result": dict(result), "score": normalize_audit_score(result)})

        categories.append(
            {
                **category,
                "id": category_id,
                "audits": audits,
                "score": arithmetic_mean(audits)
            }
        )

    return {
        "score": arithmetic_mean(categories),
        "categories": categories,
        "aggregations": get_aggregations(categories)
    }


def serialize_report(report: Mapping[str, Any]) -> str:
    """JSON text of report that is safe to inline in a <script> element."""
    return json.dumps(report).replace("<", "\\u003c")
