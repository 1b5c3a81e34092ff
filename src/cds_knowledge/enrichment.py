"""HttpEnrichmentClient — EnrichmentProvider backed by a messages-style HTTP API.

Each capability renders a system + user prompt with :class:`PromptManager`,
posts exactly one request with ``httpx`` under a timeout, and parses the
JSON reply into the enrichment models.  Any failure (no credential,
transport error, timeout, non-2xx status, malformed JSON) is logged at
WARNING and reported as "no enrichment".  There is no retry.

The reply text is located in Anthropic-style ``content`` blocks,
OpenAI-style ``choices`` or Google-style ``candidates``.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from cds_knowledge.errors import EnrichmentUnavailable
from cds_knowledge.interfaces import EnrichmentProvider
from cds_knowledge.models.enrichment import (
    ContraindicationContext,
    ContraindicationEnrichment,
    DiagnosisContext,
    EnrichmentSuggestion,
    OutcomeContext,
    OutcomeEnrichment,
    TreatmentContext,
    TreatmentEnrichment,
)
from cds_knowledge.models.enums import ContraindicationType, RiskLevel
from cds_knowledge.models.results import AdvisoryContraindication
from cds_knowledge.prompt import PromptManager

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_BASE_URL = "https://api.anthropic.com"
DEFAULT_MODEL = "claude-opus-4-5-20251101"
API_VERSION = "2023-06-01"

# Max tokens per capability
_MAX_TOKENS: dict[str, int] = {
    "diagnosis": 1500,
    "contraindication": 1000,
    "treatment": 1500,
    "outcome": 800,
}


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _first_dict(items: Any) -> dict | None:
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    return None


def _join_text_parts(parts: Any, *, typed: bool) -> str:
    if not isinstance(parts, list):
        raise EnrichmentUnavailable("Enrichment reply parts are not a list")
    texts = []
    for part in parts:
        if not isinstance(part, dict):
            raise EnrichmentUnavailable("Enrichment reply part is not an object")
        if typed and part.get("type") != "text":
            continue
        texts.append(_as_str(part.get("text")))
    return " ".join(texts)


def extract_content(response_data: dict) -> str:
    """Extract the reply text from a provider response body.

    Any body whose nesting does not match a known provider shape raises
    ``EnrichmentUnavailable``.
    """
    if "content" in response_data:
        content = response_data["content"]
        if isinstance(content, str):
            return content
        return _join_text_parts(content, typed=True)

    if "choices" in response_data:
        choice = _first_dict(response_data["choices"])
        message = choice.get("message") if choice else None
        if isinstance(message, dict):
            return _as_str(message.get("content"))

    if "candidates" in response_data:
        candidate = _first_dict(response_data["candidates"])
        content = candidate.get("content") if candidate else None
        if isinstance(content, dict):
            return _join_text_parts(content.get("parts", []), typed=False)

    raise EnrichmentUnavailable("Unrecognized enrichment response shape")


def parse_json_reply(content: str) -> Any:
    """Parse JSON from reply text, tolerating a markdown code fence."""
    content = content.strip()
    if content.startswith("```"):
        lines = content.split("\n")
        content = "\n".join(lines[1:-1]) if len(lines) > 2 else content
    try:
        return json.loads(content)
    except json.JSONDecodeError as exc:
        raise EnrichmentUnavailable(f"Malformed JSON in enrichment reply: {exc}") from exc


class HttpEnrichmentClient(EnrichmentProvider):
    """Enrichment over HTTP.

    Args:
        api_key: credential sent as ``x-api-key``; without one every call
            returns "no enrichment" without touching the network.
        base_url: service root; requests go to ``{base_url}/v1/messages``.
        model: model identifier passed through in the payload.
        timeout: per-request timeout in seconds.
        prompts: optional PromptManager override.
        transport: optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str,
        model: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        prompts: PromptManager | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key or None
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._timeout = timeout
        self._prompts = prompts or PromptManager()
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return self._api_key is not None

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(self, task: str, context: BaseModel) -> Any:
        """Send one prompt and return the parsed JSON reply.

        Raises:
            EnrichmentUnavailable: on any failure.
        """
        if not self.enabled:
            raise EnrichmentUnavailable("No enrichment credential configured")

        payload = {
            "model": self._model,
            "max_tokens": _MAX_TOKENS[task],
            "system": self._prompts.render_system(task),
            "messages": [
                {"role": "user", "content": self._prompts.render_task(task, context)},
            ],
        }
        headers = {
            "x-api-key": self._api_key,
            "anthropic-version": API_VERSION,
            "content-type": "application/json",
        }
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                resp = await client.post("/v1/messages", headers=headers, json=payload)
        except httpx.TimeoutException as exc:
            raise EnrichmentUnavailable(f"Enrichment request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise EnrichmentUnavailable(f"Enrichment transport error: {exc}") from exc

        if resp.status_code // 100 != 2:
            raise EnrichmentUnavailable(f"Enrichment service returned HTTP {resp.status_code}")
        try:
            body = resp.json()
        except ValueError as exc:
            raise EnrichmentUnavailable("Enrichment response body is not JSON") from exc
        if not isinstance(body, dict):
            raise EnrichmentUnavailable("Enrichment response body is not an object")
        return parse_json_reply(extract_content(body))

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    async def suggest_diagnoses(self, context: DiagnosisContext) -> list[EnrichmentSuggestion]:
        try:
            parsed = await self._request("diagnosis", context)
            if not isinstance(parsed, list):
                raise EnrichmentUnavailable("Diagnosis reply is not a JSON array")
            suggestions = []
            for item in parsed:
                if not isinstance(item, dict) or not _as_str(item.get("code")):
                    continue
                suggestions.append(
                    EnrichmentSuggestion(
                        code=item["code"],
                        description=_as_str(item.get("description")),
                        confidence=_confidence(item.get("confidence")),
                        reasoning=_as_str(item.get("reasoning")),
                        supporting_findings=[
                            str(f) for f in _as_list(item.get("supportingFindings"))
                        ],
                    )
                )
            return suggestions
        except (EnrichmentUnavailable, ValidationError) as exc:
            logger.warning("Diagnosis enrichment unavailable: %s", exc)
            return []

    async def analyze_contraindications(
        self, context: ContraindicationContext
    ) -> ContraindicationEnrichment | None:
        try:
            parsed = await self._request("contraindication", context)
            if not isinstance(parsed, dict):
                raise EnrichmentUnavailable("Contraindication reply is not a JSON object")
            additional = [
                AdvisoryContraindication(
                    condition=_as_str(c.get("condition")),
                    type=_enum_or(ContraindicationType, c.get("type"), ContraindicationType.PRECAUTION),
                    reason=_as_str(c.get("reason")),
                    recommendation=_as_str(c.get("recommendation")),
                )
                for c in _as_list(parsed.get("additionalContraindications"))
                if isinstance(c, dict)
            ]
            return ContraindicationEnrichment(
                additional=additional,
                safety_notes=[str(n) for n in _as_list(parsed.get("safetyNotes"))],
                overall_risk_level=_enum_or(RiskLevel, parsed.get("overallRiskLevel"), RiskLevel.MODERATE),
            )
        except (EnrichmentUnavailable, ValidationError) as exc:
            logger.warning("Contraindication enrichment unavailable: %s", exc)
            return None

    async def refine_treatment(self, context: TreatmentContext) -> TreatmentEnrichment | None:
        try:
            parsed = await self._request("treatment", context)
            if not isinstance(parsed, dict):
                raise EnrichmentUnavailable("Treatment reply is not a JSON object")
            return TreatmentEnrichment(
                recommendation=_as_str(parsed.get("recommendation")),
                techniques=[str(t) for t in _as_list(parsed.get("techniques"))],
                frequency=_as_str(parsed.get("frequency")),
                duration=_as_str(parsed.get("duration")),
                expected_outcome=_as_str(parsed.get("expectedOutcome")),
                alternatives=[
                    {"approach": _as_str(a.get("approach")), "reason": _as_str(a.get("reason"))}
                    for a in _as_list(parsed.get("alternatives"))
                    if isinstance(a, dict)
                ],
                evidence=_as_str(parsed.get("evidence")),
                citations=[str(c) for c in _as_list(parsed.get("citations"))],
            )
        except (EnrichmentUnavailable, ValidationError) as exc:
            logger.warning("Treatment enrichment unavailable: %s", exc)
            return None

    async def refine_outcome(self, context: OutcomeContext) -> OutcomeEnrichment | None:
        try:
            parsed = await self._request("outcome", context)
            if not isinstance(parsed, dict):
                raise EnrichmentUnavailable("Outcome reply is not a JSON object")
            return OutcomeEnrichment(
                predicted_outcome=_as_str(parsed.get("predictedOutcome")),
                timeline=_as_str(parsed.get("timeline")),
                additional_factors=[str(f) for f in _as_list(parsed.get("additionalFactors"))],
            )
        except (EnrichmentUnavailable, ValidationError) as exc:
            logger.warning("Outcome enrichment unavailable: %s", exc)
            return None


def _confidence(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _enum_or(enum_cls, value: Any, default):
    try:
        return enum_cls(value)
    except ValueError:
        return default
