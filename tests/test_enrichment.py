"""HttpEnrichmentClient tests.

Mock strategy: every client gets an ``httpx.MockTransport`` whose handler
records the outgoing request and returns a canned body, so no network is
touched.  Replies are wrapped in the messages-style ``content`` shape
unless a test is specifically about another shape.
"""

import json

import httpx
import pytest

from cds_knowledge.enrichment import (
    API_VERSION,
    HttpEnrichmentClient,
    extract_content,
    parse_json_reply,
)
from cds_knowledge.errors import EnrichmentUnavailable
from cds_knowledge.models.enrichment import (
    ContraindicationContext,
    DiagnosisContext,
    OutcomeContext,
    TreatmentContext,
)
from cds_knowledge.models.enums import ContraindicationType, RiskLevel


# =====================================================================
# Helpers
# =====================================================================

def _messages_body(text: str) -> dict:
    return {"content": [{"type": "text", "text": text}]}


# Provider bodies with a known top-level key but broken nesting
MISSHAPEN_BODIES = [
    {"content": None},
    {"content": ["x"]},
    {"choices": []},
    {"choices": ["x"]},
    {"choices": [{"message": None}]},
    {"choices": [{"message": "x"}]},
    {"candidates": [None]},
    {"candidates": [{"content": "x"}]},
    {"candidates": [{"content": {"parts": "x"}}]},
    {"candidates": [{"content": {"parts": ["x"]}}]},
]


class Recorder:
    """Transport handler that records requests and replays one response."""

    def __init__(self, status=200, body=None, raw=None, exc=None):
        self.status = status
        self.body = body
        self.raw = raw
        self.exc = exc
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.exc is not None:
            raise self.exc
        if self.raw is not None:
            return httpx.Response(self.status, content=self.raw)
        return httpx.Response(self.status, json=self.body)


def _client(recorder: Recorder, api_key="test-key") -> HttpEnrichmentClient:
    return HttpEnrichmentClient(
        api_key=api_key,
        base_url="https://enrichment.test/",
        model="test-model",
        timeout=5.0,
        transport=httpx.MockTransport(recorder),
    )


DIAGNOSIS_CTX = DiagnosisContext(
    chief_complaint="Lower back pain",
    patient_age=45,
    existing_codes=["M54.5"],
)
CONTRA_CTX = ContraindicationContext(procedure="Diversified Technique", medications=["Warfarin"])
OUTCOME_CTX = OutcomeContext(
    condition_code="M54.5",
    symptom_duration="ACUTE",
    rule_improvement=90,
    rule_timeline="2-6 weeks",
)


# =====================================================================
# Request shape
# =====================================================================

class TestRequest:

    @pytest.mark.asyncio
    async def test_headers_path_and_payload(self):
        recorder = Recorder(body=_messages_body("[]"))
        await _client(recorder).suggest_diagnoses(DIAGNOSIS_CTX)

        assert len(recorder.requests) == 1
        request = recorder.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/v1/messages"
        assert request.url.host == "enrichment.test"
        assert request.headers["x-api-key"] == "test-key"
        assert request.headers["anthropic-version"] == API_VERSION

        payload = json.loads(request.content)
        assert payload["model"] == "test-model"
        assert payload["max_tokens"] == 1500
        assert "ICD-10" in payload["system"]
        assert payload["messages"][0]["role"] == "user"
        assert "Chief Complaint: Lower back pain" in payload["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_disabled_without_key(self):
        recorder = Recorder(body=_messages_body("[]"))
        client = _client(recorder, api_key="")

        assert client.enabled is False
        assert await client.suggest_diagnoses(DIAGNOSIS_CTX) == []
        assert await client.analyze_contraindications(CONTRA_CTX) is None
        assert recorder.requests == []


# =====================================================================
# Reply parsing
# =====================================================================

class TestDiagnosisReply:

    @pytest.mark.asyncio
    async def test_fenced_reply_parsed(self):
        reply = (
            "```json\n"
            '[{"code": "M54.5", "description": "Low back pain", "confidence": 85,'
            ' "reasoning": "Localized lumbar pain", "supportingFindings": ["pain", "lumbar"]},'
            ' {"description": "no code"},'
            ' {"code": "M99.03", "confidence": "not a number"}]\n'
            "```"
        )
        suggestions = await _client(Recorder(body=_messages_body(reply))).suggest_diagnoses(
            DIAGNOSIS_CTX
        )

        assert [s.code for s in suggestions] == ["M54.5", "M99.03"]
        assert suggestions[0].confidence == 85
        assert suggestions[0].supporting_findings == ["pain", "lumbar"]
        assert suggestions[1].confidence == 0

    @pytest.mark.asyncio
    async def test_object_instead_of_array(self):
        reply = json.dumps({"code": "M54.5"})
        client = _client(Recorder(body=_messages_body(reply)))
        assert await client.suggest_diagnoses(DIAGNOSIS_CTX) == []


class TestContraindicationReply:

    @pytest.mark.asyncio
    async def test_parsed_with_defaults(self):
        reply = json.dumps({
            "additionalContraindications": [
                {"condition": "Bleeding risk", "type": "ABSOLUTE", "reason": "anticoagulated"},
                {"condition": "Unknown typed", "type": "SOMETIMES"},
                "not an object",
            ],
            "safetyNotes": ["Use low force"],
            "overallRiskLevel": "EXTREME",
        })
        recorder = Recorder(body=_messages_body(reply))
        result = await _client(recorder).analyze_contraindications(CONTRA_CTX)

        assert [c.condition for c in result.additional] == ["Bleeding risk", "Unknown typed"]
        assert result.additional[0].type == ContraindicationType.ABSOLUTE
        assert result.additional[1].type == ContraindicationType.PRECAUTION
        assert result.safety_notes == ["Use low force"]
        assert result.overall_risk_level == RiskLevel.MODERATE
        assert json.loads(recorder.requests[0].content)["max_tokens"] == 1000


class TestTreatmentReply:

    @pytest.mark.asyncio
    async def test_parsed(self):
        reply = json.dumps({
            "recommendation": "Gentle mobilization",
            "techniques": ["Activator Method"],
            "expectedOutcome": "Good",
            "alternatives": [{"approach": "Massage", "reason": "Comfort"}],
            "citations": ["Guideline 2020"],
        })
        result = await _client(Recorder(body=_messages_body(reply))).refine_treatment(
            TreatmentContext(diagnosis_code="M54.5", acuity="ACUTE")
        )
        assert result.recommendation == "Gentle mobilization"
        assert result.techniques == ["Activator Method"]
        assert result.expected_outcome == "Good"
        assert result.alternatives == [{"approach": "Massage", "reason": "Comfort"}]
        assert result.frequency == ""


class TestOutcomeReply:

    @pytest.mark.asyncio
    async def test_parsed(self):
        reply = json.dumps({
            "predictedOutcome": "Likely full recovery",
            "timeline": "3-5 weeks",
            "additionalFactors": ["Active job"],
        })
        result = await _client(Recorder(body=_messages_body(reply))).refine_outcome(OUTCOME_CTX)
        assert result.predicted_outcome == "Likely full recovery"
        assert result.timeline == "3-5 weeks"
        assert result.additional_factors == ["Active job"]


# =====================================================================
# Failures become "no enrichment"
# =====================================================================

class TestFailures:

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        client = _client(Recorder(status=500, body={"error": "boom"}))
        assert await client.suggest_diagnoses(DIAGNOSIS_CTX) == []
        assert await client.refine_outcome(OUTCOME_CTX) is None

    @pytest.mark.asyncio
    async def test_timeout(self):
        recorder = Recorder(exc=httpx.ReadTimeout("too slow"))
        assert await _client(recorder).analyze_contraindications(CONTRA_CTX) is None
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_connection_error(self):
        recorder = Recorder(exc=httpx.ConnectError("refused"))
        assert await _client(recorder).suggest_diagnoses(DIAGNOSIS_CTX) == []

    @pytest.mark.asyncio
    async def test_malformed_reply_json(self):
        client = _client(Recorder(body=_messages_body("this is not json")))
        assert await client.refine_outcome(OUTCOME_CTX) is None

    @pytest.mark.asyncio
    async def test_body_not_json(self):
        client = _client(Recorder(raw=b"<html>gateway</html>"))
        assert await client.suggest_diagnoses(DIAGNOSIS_CTX) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", MISSHAPEN_BODIES)
    async def test_misshapen_body(self, body):
        client = _client(Recorder(body=body))
        assert await client.suggest_diagnoses(DIAGNOSIS_CTX) == []
        assert await client.analyze_contraindications(CONTRA_CTX) is None
        assert await client.refine_outcome(OUTCOME_CTX) is None

    @pytest.mark.asyncio
    async def test_failure_is_logged(self, caplog):
        client = _client(Recorder(status=503, body={}))
        with caplog.at_level("WARNING", logger="cds_knowledge.enrichment"):
            await client.refine_outcome(OUTCOME_CTX)
        assert "Outcome enrichment unavailable" in caplog.text


# =====================================================================
# Response shapes
# =====================================================================

class TestExtractContent:

    def test_content_blocks(self):
        body = {"content": [
            {"type": "text", "text": "a"},
            {"type": "tool_use", "id": "x"},
            {"type": "text", "text": "b"},
        ]}
        assert extract_content(body) == "a b"

    def test_choices(self):
        body = {"choices": [{"message": {"content": "[1]"}}]}
        assert extract_content(body) == "[1]"

    def test_candidates(self):
        body = {"candidates": [{"content": {"parts": [{"text": "x"}, {"text": "y"}]}}]}
        assert extract_content(body) == "x y"

    def test_unknown_shape(self):
        with pytest.raises(EnrichmentUnavailable):
            extract_content({"output": "?"})

    def test_non_string_text_is_blank(self):
        body = {"content": [{"type": "text", "text": 7}, {"type": "text", "text": "b"}]}
        assert extract_content(body) == " b"

    @pytest.mark.parametrize("body", MISSHAPEN_BODIES)
    def test_misshapen_nesting(self, body):
        with pytest.raises(EnrichmentUnavailable):
            extract_content(body)


class TestParseJsonReply:

    def test_plain(self):
        assert parse_json_reply(' {"a": 1} ') == {"a": 1}

    def test_fenced(self):
        assert parse_json_reply('```\n["x"]\n```') == ["x"]

    def test_malformed(self):
        with pytest.raises(EnrichmentUnavailable):
            parse_json_reply("{not json")
