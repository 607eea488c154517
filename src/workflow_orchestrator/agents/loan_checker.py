"""Loan document checklist and basic worthiness rules."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from workflow_orchestrator.orchestrator.workflow.conditions import evaluate_condition
from workflow_orchestrator.orchestrator.workflow.definitions import Condition

from .registry import AgentConfigError, parse_agent_config

LOAN_CHECKER_AGENT_ID = "loanCheckerAgent_v1"


class WorthinessRule(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    field_name: str = Field(alias="fieldName", min_length=1)
    operator: Literal[">=", "<=", "==", ">", "<", "exists", "not_exists"]
    value: Any = None
    description: str | None = None


class LoanCheckerConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    required_document_types: list[str] = Field(alias="requiredDocumentTypes", min_length=1)
    basic_worthiness_rules: list[WorthinessRule] = Field(
        default_factory=list, alias="basicWorthinessRules"
    )


class SubmittedDocument(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    doc_type: str = Field(alias="docType", min_length=1)
    file_name: str | None = Field(default=None, alias="fileName")
    file_id: str | None = Field(default=None, alias="fileId")


class LoanApplication(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    submitted_documents: list[SubmittedDocument] = Field(
        default_factory=list, alias="submittedDocuments"
    )
    application_data: dict[str, Any] = Field(default_factory=dict, alias="applicationData")


def _check_rule(rule: WorthinessRule, data: dict[str, Any]) -> dict[str, Any]:
    actual = data.get(rule.field_name)
    if actual is None and rule.operator not in {"exists", "not_exists"}:
        passed = False
        message = f"Field '{rule.field_name}' not found in application data."
    else:
        passed = evaluate_condition(
            Condition(field=rule.field_name, operator=rule.operator, value=rule.value),
            {rule.field_name: actual},
        )
        message = (
            "Rule passed."
            if passed
            else f"Rule failed: Expected {rule.field_name} {rule.operator} {rule.value}, got {actual}."
        )
    return {
        "ruleDescription": rule.description,
        "fieldName": rule.field_name,
        "operator": rule.operator,
        "expectedValue": rule.value,
        "actualValue": actual,
        "passed": passed,
        "message": message,
    }


def check_loan_application(input_data: dict[str, Any]) -> dict[str, Any]:
    config = parse_agent_config(LoanCheckerConfig, input_data)
    try:
        application = LoanApplication.model_validate(input_data)
    except ValidationError as e:
        raise AgentConfigError(f"Invalid loan application input: {e}") from e

    submitted = {doc.doc_type for doc in application.submitted_documents}
    verified = [t for t in config.required_document_types if t in submitted]
    missing = [t for t in config.required_document_types if t not in submitted]
    documents_ok = not missing

    rule_results = [
        _check_rule(rule, application.application_data) for rule in config.basic_worthiness_rules
    ]
    passed_all = all(r["passed"] for r in rule_results)

    if not documents_ok:
        assessment = "Rejected"
        reason = f"Missing required documents: {', '.join(missing)}."
    elif not passed_all:
        first_failure = next(r["message"] for r in rule_results if not r["passed"])
        assessment = "Rejected"
        reason = f"One or more worthiness rules failed. First failure: {first_failure}"
    else:
        assessment = "Approved"
        reason = "All documents present and basic worthiness rules passed."

    return {
        "documentsOk": documents_ok,
        "missingDocumentTypes": missing,
        "verifiedDocumentTypes": verified,
        "rulesCheckResult": {"passedAll": passed_all, "ruleResults": rule_results},
        "overallAssessment": assessment,
        "assessmentReason": reason,
    }
