"""Deterministic dummy oracle for tests and offline demos.

Reads the JSON log lines embedded in the prompt and answers with keyword
heuristics, so the full analysis / enrichment / search path runs without
network access.
"""

from __future__ import annotations

import json
import re
from typing import Any, TypeVar

from pydantic import BaseModel

from schemas.llm_responses import BatchAnalysisResponse, ClusterExplanation, CopilotSummary, SearchAnswer

T = TypeVar("T", bound=BaseModel)

# keyword -> (category, cluster_id, cluster_name, root cause, fix); first match wins
_CLUSTER_KEYWORDS: list[tuple[str, tuple[str, str, str, str, str]]] = [
    ("payment", (
        "payment_failure", "payment_gateway_errors", "Payment_Gateway_Errors",
        "Payment gateway rejecting or timing out on charge requests",
        "Check payment gateway status and enable retry with backoff",
    )),
    ("database", (
        "database_error", "database_errors", "Database_Errors",
        "Database connection pool exhausted or queries failing",
        "Increase connection pool size and review slow queries",
    )),
    ("timeout", (
        "performance", "performance_degradation", "Performance_Degradation",
        "Upstream dependency responding slower than the request timeout",
        "Profile the slow dependency and tune timeouts",
    )),
    ("slow", (
        "performance", "performance_degradation", "Performance_Degradation",
        "Upstream dependency responding slower than the request timeout",
        "Profile the slow dependency and tune timeouts",
    )),
    ("auth", (
        "authentication", "authentication_failures", "Authentication_Failures",
        "Authentication service rejecting valid sessions",
        "Check auth service health and token signing keys",
    )),
    ("login", (
        "authentication", "authentication_failures", "Authentication_Failures",
        "Authentication service rejecting valid sessions",
        "Check auth service health and token signing keys",
    )),
    ("seat", (
        "inventory", "inventory_errors", "Inventory_Errors",
        "Seat inventory out of sync with reservations",
        "Reconcile seat inventory and review locking",
    )),
    ("inventory", (
        "inventory", "inventory_errors", "Inventory_Errors",
        "Seat inventory out of sync with reservations",
        "Reconcile seat inventory and review locking",
    )),
]

_LEVEL_SCORES: dict[str, tuple[float, str]] = {
    "CRITICAL": (0.95, "critical"),
    "ERROR": (0.75, "high"),
    "WARN": (0.4, "medium"),
    "INFO": (0.05, "low"),
}

_CLUSTER_RE = re.compile(r'ERROR CLUSTER:\s*"(?P<name>[^"]*)"')
_QUESTION_RE = re.compile(r'USER QUESTION:\s*"(?P<question>[^"]*)"')


def _json_lines(prompt: str) -> list[dict[str, Any]]:
    """Every prompt line that is a JSON object, in order."""
    objects: list[dict[str, Any]] = []
    for line in prompt.splitlines():
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            value = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            objects.append(value)
    return objects


def _analyse(entry: dict[str, Any]) -> dict[str, Any]:
    level = str(entry.get("level", "INFO")).upper()
    score, severity = _LEVEL_SCORES.get(level, (0.05, "low"))
    text = " ".join(
        str(entry.get(k) or "") for k in ("message", "endpoint", "error_code", "error_message")
    ).lower()

    if level == "INFO":
        category, cluster_id, cluster_name = "other", "normal_operations", "Normal_Operations"
        root_cause, fix = "Routine operation", "No action needed"
    else:
        category, cluster_id, cluster_name, root_cause, fix = (
            "other", "application_errors", "Application_Errors",
            "Unclassified application failure",
            "Inspect the stack trace of the failing request",
        )
        for keyword, values in _CLUSTER_KEYWORDS:
            if keyword in text:
                category, cluster_id, cluster_name, root_cause, fix = values
                break

    return {
        "log_index": entry["log_index"],
        "anomaly_detected": score >= 0.7,
        "anomaly_score": score,
        "severity": severity,
        "category": category,
        "root_cause": root_cause,
        "ai_explanation": f"{level} log: {entry.get('message', '')}"[:500],
        "suggested_fix": fix,
        "cluster_id": cluster_id,
        "cluster_name": cluster_name,
    }


class DummyLLM:
    """Deterministic oracle driven by keyword heuristics. Implements LLMProvider protocol."""

    provider_name: str = "dummy"
    model_id: str = "dummy-heuristic-v1"

    def __init__(self) -> None:
        self.calls: list[str] = []

    async def generate(
        self,
        prompt: str,
        response_model: type[T],
        *,
        temperature: float = 0.0,
        max_tokens: int = 1024,
    ) -> T:
        self.calls.append(response_model.__name__)

        if response_model is BatchAnalysisResponse:
            payload: dict[str, Any] = self._analyse_batch(prompt)
        elif response_model is ClusterExplanation:
            payload = self._explain(prompt)
        elif response_model is SearchAnswer:
            payload = self._answer(prompt)
        elif response_model is CopilotSummary:
            payload = self._digest(prompt)
        else:
            payload = {}
        return response_model.model_validate(payload)

    def _analyse_batch(self, prompt: str) -> dict[str, Any]:
        entries = [e for e in _json_lines(prompt) if "log_index" in e]
        analyses = [_analyse(e) for e in entries]

        sizes: dict[str, int] = {}
        for a in analyses:
            sizes[a["cluster_id"]] = sizes.get(a["cluster_id"], 0) + 1
        for a in analyses:
            a["similar_logs_count"] = sizes[a["cluster_id"]]
        return {"analyses": analyses}

    def _explain(self, prompt: str) -> dict[str, Any]:
        match = _CLUSTER_RE.search(prompt)
        cluster = match.group("name") if match else "unknown"
        entries = [e for e in _json_lines(prompt) if "level" in e]
        critical = sum(1 for e in entries if str(e.get("level", "")).upper() == "CRITICAL")
        return {
            "explanation": (
                f"ROOT CAUSE: Repeated failures grouped under {cluster} "
                f"({len(entries)} logs, {critical} critical). "
                "IMPACT: Requests in this cluster fail for end users. "
                "SUGGESTED FIX: Inspect the shared dependency of these requests and roll back recent changes."
            )
        }

    def _answer(self, prompt: str) -> dict[str, Any]:
        match = _QUESTION_RE.search(prompt)
        question = match.group("question") if match else ""
        groups = [g for g in _json_lines(prompt) if "error" in g and "count" in g]
        groups.sort(key=lambda g: g.get("count", 0), reverse=True)
        if not groups:
            return {
                "answer": f"No significant error patterns found for: {question}".strip(),
                "root_cause": "None identified",
                "impact": "No measurable impact",
            }
        top = groups[0]
        return {
            "answer": f"The dominant issue is {top['error']} with {top['count']} occurrences.",
            "root_cause": f"{top['error']} failing repeatedly",
            "impact": f"{sum(g.get('count', 0) for g in groups)} problem logs in the window",
            "suggested_fixes": [
                f"Investigate {top['error']}",
                "Check recent deployments",
                "Review dependency health",
            ],
            "timeline": f"First seen {top.get('first_seen', 'unknown')}",
            "relevant_error_types": [str(g["error"]) for g in groups[:3]],
        }

    def _digest(self, prompt: str) -> dict[str, Any]:
        entries = [e for e in _json_lines(prompt) if "root_cause" in e]
        causes: dict[str, int] = {}
        for e in entries:
            if str(e.get("level", "")).upper() in ("ERROR", "CRITICAL") and e.get("root_cause"):
                causes[e["root_cause"]] = causes.get(e["root_cause"], 0) + 1
        ranked = sorted(causes, key=causes.__getitem__, reverse=True)
        if not ranked:
            return {
                "summary": f"{len(entries)} recent logs analysed; no errors stand out.",
                "next_steps": ["Keep monitoring"],
            }
        return {
            "summary": (
                f"{len(entries)} recent logs analysed. "
                f"Most failures trace back to: {ranked[0]} ({causes[ranked[0]]} logs)."
            ),
            "key_problems": [f"{cause} ({causes[cause]} logs)" for cause in ranked[:3]],
            "next_steps": [f"Investigate: {ranked[0]}", "Check recent deployments"],
        }
