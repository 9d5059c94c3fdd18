# MIS FinSight - Multi-state MIS reporting application for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
AI-assisted classification for MIS FinSight.

When no rule matches an account, the classifier can ask an external
"oracle" for a suggestion. The oracle is a collaborator behind the
``ClassificationOracle`` protocol; the bundled implementation talks to a
local Ollama server (``/api/generate``) with a non-streaming request.

Contract
--------
- One batched call per classification run, bounded by a timeout.
- Suggestions whose category (or subcategory) is not in the active
  category list are discarded.
- Suggestions with a confidence strictly above the auto-accept threshold
  (default 80) become ``origin = ai`` classifications; lower ones stay
  unclassified and keep the suggestion for the review queue.
- Any failure (connection, timeout, HTTP error, unparsable answer,
  any exception raised by a pluggable oracle, cancellation) degrades the whole batch to ``needs_review`` and is
  reported as an ``oracle-failure`` diagnostic. Nothing is ever silently
  defaulted to a category.
"""

import json
import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import requests

from .categories import CategoryId, category_choices, parse_category
from .models import (
    ClassificationOrigin,
    ClassificationResult,
    ConfidenceTier,
    Diagnostic,
    DiagnosticKind,
)

logger = logging.getLogger(__name__)

OLLAMA_BASE_URL = "http://localhost:11434"
DEFAULT_MODEL = "llama3.2"
DEFAULT_TIMEOUT = 60.0
AUTO_ACCEPT_THRESHOLD = 80.0
DEFAULT_CONFIDENCE = 70.0

CategoryChoices = Sequence[tuple[str, Sequence[str]]]


class OracleError(RuntimeError):
    """Raised by an oracle when a batch cannot be classified."""


@dataclass(frozen=True)
class OracleRequest:
    """One entity to classify (a ledger account or a party name)."""

    name: str
    entity_type: str = "ledger"
    amount: Optional[float] = None
    context: str = ""


@dataclass(frozen=True)
class OracleSuggestion:
    """Raw suggestion returned by an oracle, before validation."""

    name: str
    category: str
    subcategory: str
    confidence: float = DEFAULT_CONFIDENCE
    reasoning: str = ""


class ClassificationOracle(Protocol):
    def classify_batch(
        self, batch: Sequence[OracleRequest], categories: CategoryChoices
    ) -> list[OracleSuggestion]: ...


# ---------------------------------------------------------------------------
# Ollama implementation
# ---------------------------------------------------------------------------

PROMPT_TEMPLATE = """\
You are a financial transaction classifier for a D2C consumer products company.
Classify each ledger account or party name below into one MIS category.

## Available categories (head -> subheads)
{category_list}

## Entities to classify
{entity_list}

## Response format
Respond with a JSON array only. Each object must have:
{{"entityName": "exact entity name", "head": "one head from the list",
  "subhead": "one subhead of that head", "confidence": 0-100,
  "reasoning": "brief explanation"}}

Only use heads and subheads from the list above. If unsure, set confidence
below 70 and explain why in reasoning.
"""

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def build_prompt(batch: Sequence[OracleRequest], categories: CategoryChoices) -> str:
    category_list = "\n".join(
        f'  - "{label}": ' + ", ".join(f'"{s}"' for s in subs)
        for label, subs in categories
    )
    lines = []
    for i, req in enumerate(batch, start=1):
        details = [req.entity_type]
        if req.amount is not None:
            details.append(f"amount: {req.amount:.2f}")
        if req.context:
            details.append(f"context: {req.context}")
        lines.append(f'{i}. "{req.name}" ({", ".join(details)})')
    return PROMPT_TEMPLATE.format(
        category_list=category_list, entity_list="\n".join(lines)
    )


def _to_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def parse_suggestions(text: str) -> list[OracleSuggestion]:
    """
    Parse an oracle answer into suggestions.

    Accepts a bare JSON array, an object with a ``classifications`` array,
    and answers wrapped in Markdown code fences. Missing confidences default
    to 70.

    Raises
    ------
    OracleError
        If the answer is not valid JSON of the expected shape.
    """
    cleaned = _FENCE_RE.sub("", text.strip()).strip()
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise OracleError(f"Oracle answer is not valid JSON: {exc}") from exc

    if isinstance(payload, dict):
        if "entityName" in payload or "name" in payload:
            payload = [payload]
        else:
            payload = payload.get("classifications", payload.get("results"))
    if not isinstance(payload, list):
        raise OracleError("Oracle answer must be a JSON array of classifications.")

    suggestions = []
    for item in payload:
        if not isinstance(item, dict):
            continue
        suggestions.append(
            OracleSuggestion(
                name=str(item.get("entityName") or item.get("name") or ""),
                category=str(item.get("head") or item.get("category") or ""),
                subcategory=str(item.get("subhead") or item.get("subcategory") or ""),
                confidence=_to_float(item.get("confidence"), DEFAULT_CONFIDENCE),
                reasoning=str(item.get("reasoning") or ""),
            )
        )
    return suggestions


class OllamaClassificationOracle:
    """
    Classification oracle backed by a local Ollama server.

    Parameters
    ----------
    base_url:
        Ollama server URL.
    model:
        Model name (must be pulled on the server).
    timeout:
        Request timeout in seconds.
    """

    def __init__(
        self,
        base_url: str = OLLAMA_BASE_URL,
        model: str = DEFAULT_MODEL,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout

    def classify_batch(
        self, batch: Sequence[OracleRequest], categories: CategoryChoices
    ) -> list[OracleSuggestion]:
        if not batch:
            return []
        payload = {
            "model": self.model,
            "prompt": build_prompt(batch, categories),
            "stream": False,
            "format": "json",
        }
        try:
            resp = requests.post(
                f"{self.base_url}/api/generate",
                json=payload,
                timeout=self.timeout,
            )
            resp.raise_for_status()
            text = resp.json()["response"]
            if not isinstance(text, str):
                raise OracleError(
                    f"Ollama returned a non-text response: {type(text).__name__}"
                )
        except requests.exceptions.ConnectionError as exc:
            raise OracleError(
                f"Cannot connect to Ollama at {self.base_url}. "
                "Ensure it is running: ollama serve"
            ) from exc
        except requests.exceptions.Timeout as exc:
            raise OracleError(
                f"Ollama request timed out after {self.timeout:.0f} s."
            ) from exc
        except requests.exceptions.RequestException as exc:
            raise OracleError(f"Ollama request failed: {exc}") from exc
        except (KeyError, ValueError) as exc:
            raise OracleError(f"Unexpected response format from Ollama: {exc}") from exc

        return parse_suggestions(text)


# ---------------------------------------------------------------------------
# Validation & thresholding
# ---------------------------------------------------------------------------


def _validate(
    suggestion: OracleSuggestion, categories: CategoryChoices
) -> Optional[tuple[CategoryId, str]]:
    """Return the canonical (category, subcategory) pair, or None if invalid."""
    category = parse_category(suggestion.category)
    if category is None:
        return None
    allowed = {parse_category(label): subs for label, subs in categories}
    if category not in allowed:
        return None
    wanted = suggestion.subcategory.strip().lower()
    for sub in allowed[category]:
        if sub.lower() == wanted:
            return category, sub
    return None


def _result_for(
    suggestion: OracleSuggestion,
    categories: CategoryChoices,
    threshold: float,
) -> ClassificationResult:
    pair = _validate(suggestion, categories)
    if pair is None:
        return ClassificationResult.unclassified(
            reason=(
                "AI suggested a category outside the active list: "
                f"{suggestion.category!r} / {suggestion.subcategory!r}"
            ),
            ai_confidence=suggestion.confidence,
        )
    category, subcategory = pair
    if suggestion.confidence > threshold:
        return ClassificationResult(
            category=category,
            subcategory=subcategory,
            confidence_tier=ConfidenceTier.MEDIUM,
            origin=ClassificationOrigin.AI,
            reason=suggestion.reasoning,
            ai_confidence=suggestion.confidence,
        )
    return ClassificationResult.unclassified(
        reason=(
            f"AI confidence {suggestion.confidence:.0f} below "
            f"auto-accept threshold {threshold:.0f}"
        ),
        ai_confidence=suggestion.confidence,
        suggestion=pair,
    )


def resolve_with_oracle(
    batch: Sequence[OracleRequest],
    oracle: ClassificationOracle,
    categories: Optional[CategoryChoices] = None,
    threshold: float = AUTO_ACCEPT_THRESHOLD,
    should_cancel: Optional[Callable[[], bool]] = None,
) -> tuple[dict[str, ClassificationResult], list[Diagnostic]]:
    """
    Classify a batch of entities through the oracle.

    Returns a mapping from entity name to ClassificationResult (one entry per
    request) and the diagnostics produced by the call.
    """
    if not batch:
        return {}, []
    if categories is None:
        categories = category_choices()

    def _fail_all(message: str) -> tuple[dict[str, ClassificationResult], list[Diagnostic]]:
        logger.warning("AI classification failed: %s", message)
        results = {
            req.name: ClassificationResult.unclassified(
                reason=f"AI classification failed: {message}"
            )
            for req in batch
        }
        diag = Diagnostic(
            kind=DiagnosticKind.ORACLE_FAILURE,
            message=f"AI classification failed for {len(batch)} account(s): {message}",
            source="oracle",
        )
        return results, [diag]

    if should_cancel is not None and should_cancel():
        return _fail_all("cancelled")

    try:
        suggestions = oracle.classify_batch(batch, categories)
    except Exception as exc:
        return _fail_all(f"{type(exc).__name__}: {exc}")

    if should_cancel is not None and should_cancel():
        return _fail_all("cancelled")

    by_name = {s.name.strip().lower(): s for s in suggestions if s.name}
    results: dict[str, ClassificationResult] = {}
    for position, req in enumerate(batch):
        suggestion = by_name.get(req.name.strip().lower())
        if suggestion is None and len(suggestions) == len(batch):
            # unnamed answers are taken positionally
            candidate = suggestions[position]
            if not candidate.name:
                suggestion = candidate
        if suggestion is None:
            results[req.name] = ClassificationResult.unclassified(
                reason="No AI suggestion returned"
            )
            continue
        results[req.name] = _result_for(suggestion, categories, threshold)
    return results, []
