"""Unit tests for the built-in agents, the registry and agent dispatch."""

from __future__ import annotations

import json
from typing import Any

import pytest

from workflow_orchestrator.agents import (
    DATA_EXTRACTOR_AGENT_ID,
    LOAN_CHECKER_AGENT_ID,
    AgentRegistry,
    build_default_registry,
)
from workflow_orchestrator.agents.data_extractor import DataExtractorAgent
from workflow_orchestrator.agents.dispatch import (
    BackgroundAgentDispatcher,
    InlineAgentDispatcher,
    run_agent_job,
)
from workflow_orchestrator.agents.loan_checker import check_loan_application
from workflow_orchestrator.agents.registry import AgentConfigError
from workflow_orchestrator.llm.provider import LLMProvider
from workflow_orchestrator.orchestrator.workflow.errors import AgentNotFoundError
from workflow_orchestrator.orchestrator.workflow.interfaces import AgentJob, AgentOutcome


class FakeLLM(LLMProvider):
    def __init__(self, reply: str) -> None:
        self.reply = reply
        self.messages: list[list[dict[str, str]]] = []

    def chat(
        self,
        messages: list[dict[str, str]],
        max_tokens: int | None = None,
        temperature: float | None = None,
        json_mode: bool = False,
        **kwargs: Any,
    ) -> str:
        assert json_mode
        self.messages.append(messages)
        return self.reply


def _loan_input(documents: list[str], **application: Any) -> dict[str, Any]:
    return {
        "agent_config": {
            "requiredDocumentTypes": ["id", "payslip"],
            "basicWorthinessRules": [
                {"fieldName": "creditScore", "operator": ">=", "value": 650},
                {"fieldName": "income", "operator": "exists"},
            ],
        },
        "submittedDocuments": [{"docType": d, "fileName": f"{d}.pdf"} for d in documents],
        "applicationData": application,
    }


def test_loan_checker_approves_complete_application() -> None:
    result = check_loan_application(_loan_input(["id", "payslip"], creditScore=700, income=1))

    assert result["overallAssessment"] == "Approved"
    assert result["documentsOk"] is True
    assert result["verifiedDocumentTypes"] == ["id", "payslip"]
    assert result["rulesCheckResult"]["passedAll"] is True


def test_loan_checker_rejects_missing_documents() -> None:
    result = check_loan_application(_loan_input(["id"], creditScore=700, income=1))

    assert result["overallAssessment"] == "Rejected"
    assert result["missingDocumentTypes"] == ["payslip"]
    assert result["assessmentReason"] == "Missing required documents: payslip."


def test_loan_checker_rejects_failed_rule() -> None:
    result = check_loan_application(_loan_input(["id", "payslip"], creditScore=600, income=1))

    assert result["overallAssessment"] == "Rejected"
    first = result["rulesCheckResult"]["ruleResults"][0]
    assert first["passed"] is False
    assert first["actualValue"] == 600
    assert "First failure: Rule failed" in result["assessmentReason"]


def test_loan_checker_reports_missing_field() -> None:
    result = check_loan_application(_loan_input(["id", "payslip"], income=1))

    rule = result["rulesCheckResult"]["ruleResults"][0]
    assert rule["message"] == "Field 'creditScore' not found in application data."
    assert result["overallAssessment"] == "Rejected"


def test_loan_checker_requires_config() -> None:
    with pytest.raises(AgentConfigError, match="agent_config"):
        check_loan_application({"submittedDocuments": []})


_INVOICE = "Invoice INV-1001 due 2025-02-01\ninvoice inv-1002 due 2025-03-01"


def _extractor_input(*fields: dict[str, Any], source: str = "document.text") -> dict[str, Any]:
    return {
        "document": {"text": _INVOICE},
        "agent_config": {"sourceDataFieldPath": source, "fieldsToExtract": list(fields)},
    }


def test_data_extractor_regex_fields() -> None:
    agent = DataExtractorAgent()

    result = agent(
        _extractor_input(
            {"outputFieldName": "invoice", "extractionMethod": "regex", "regexPattern": r"INV-(\d+)"},
            {
                "outputFieldName": "all_invoices",
                "extractionMethod": "regex",
                "regexPattern": r"INV-(\d+)",
                "extractMultiple": True,
            },
            {
                "outputFieldName": "case_sensitive",
                "extractionMethod": "regex",
                "regexPattern": r"inv-\d+",
                "regexFlags": "",
            },
        )
    )

    assert result["errors"] == []
    assert result["extractedFields"] == {
        "invoice": "1001",
        "all_invoices": ["1001", "1002"],
        "case_sensitive": "inv-1002",
    }


def test_data_extractor_collects_errors() -> None:
    agent = DataExtractorAgent()

    result = agent(
        _extractor_input(
            {"outputFieldName": "bad", "extractionMethod": "regex", "regexPattern": "("},
            {"outputFieldName": "nopattern", "extractionMethod": "regex"},
            {"outputFieldName": "who", "extractionMethod": "ai_entity", "aiEntityType": "PERSON"},
        )
    )

    assert result["extractedFields"] == {}
    assert [e["fieldName"] for e in result["errors"]] == ["bad", "nopattern", "who"]
    assert "requires a configured LLM provider" in result["errors"][2]["message"]


def test_data_extractor_missing_source() -> None:
    result = DataExtractorAgent()(
        _extractor_input(
            {"outputFieldName": "x", "extractionMethod": "regex", "regexPattern": "x"},
            source="document.body",
        )
    )

    assert result["extractedFields"] == {}
    assert result["errors"][0]["fieldName"] == "document.body"


def test_data_extractor_ai_entity_uses_llm() -> None:
    llm = FakeLLM(json.dumps({"values": ["2025-02-01", "2025-03-01"]}))
    agent = DataExtractorAgent(llm=llm)

    result = agent(
        _extractor_input(
            {"outputFieldName": "due", "extractionMethod": "ai_entity", "aiEntityType": "DATE"},
        )
    )

    assert result["extractedFields"] == {"due": "2025-02-01"}
    assert "Entity type: DATE" in llm.messages[0][1]["content"]


def test_data_extractor_bad_llm_reply_is_field_error() -> None:
    agent = DataExtractorAgent(llm=FakeLLM("not json"))

    result = agent(
        _extractor_input(
            {"outputFieldName": "due", "extractionMethod": "ai_entity", "aiEntityType": "DATE"},
        )
    )

    assert result["extractedFields"] == {}
    assert "not valid JSON" in result["errors"][0]["message"]


def test_registry_lookup_and_duplicates() -> None:
    registry = build_default_registry()

    assert LOAN_CHECKER_AGENT_ID in registry
    assert registry.identifiers() == sorted([LOAN_CHECKER_AGENT_ID, DATA_EXTRACTOR_AGENT_ID])
    with pytest.raises(ValueError, match="already registered"):
        registry.register(LOAN_CHECKER_AGENT_ID, lambda data: {})
    with pytest.raises(AgentNotFoundError):
        registry.execute("missing", {})


def test_run_agent_job_reports_errors() -> None:
    registry = AgentRegistry()
    registry.register("list", lambda data: ["not", "a", "dict"])  # type: ignore[arg-type,return-value]
    registry.register("ok", lambda data: {"seen": data["x"]})

    bad = run_agent_job(registry, AgentJob(task_id="t", agent_id="list"))
    missing = run_agent_job(registry, AgentJob(task_id="t", agent_id="nobody"))
    good = run_agent_job(registry, AgentJob(task_id="t", agent_id="ok", input_data={"x": 1}))

    assert not bad.ok
    assert missing.error == "No agent registered for 'nobody'"
    assert good.ok
    assert good.output == {"seen": 1}


def test_dispatchers_report_outcomes() -> None:
    registry = AgentRegistry()
    registry.register("ok", lambda data: {"value": data.get("value")})
    outcomes: list[AgentOutcome] = []

    InlineAgentDispatcher(registry).submit(
        AgentJob(task_id="t1", agent_id="ok", input_data={"value": 1}), outcomes.append
    )
    background = BackgroundAgentDispatcher(registry)
    background.submit(
        AgentJob(task_id="t2", agent_id="ok", input_data={"value": 2}), outcomes.append
    )

    assert background.wait(timeout=10)
    assert sorted(o.task_id for o in outcomes) == ["t1", "t2"]
    assert all(o.ok for o in outcomes)


def test_retry_delay_only_waited_out_in_background(monkeypatch: pytest.MonkeyPatch) -> None:
    slept: list[float] = []
    monkeypatch.setattr("workflow_orchestrator.agents.dispatch.time.sleep", slept.append)
    registry = AgentRegistry()
    registry.register("ok", lambda data: {})
    outcomes: list[AgentOutcome] = []
    job = AgentJob(task_id="t", agent_id="ok", delay_seconds=30.0)

    InlineAgentDispatcher(registry).submit(job, outcomes.append)
    assert slept == []

    background = BackgroundAgentDispatcher(registry)
    background.submit(job, outcomes.append)
    assert background.wait(timeout=10)

    assert slept == [30.0]
    assert [o.ok for o in outcomes] == [True, True]
