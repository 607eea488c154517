"""Pull named fields out of a block of text.

Fields are extracted either with a regular expression or, for entity types
that do not lend themselves to patterns, by asking the configured LLM.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from workflow_orchestrator.llm.provider import LLMProvider, LLMResponseError
from workflow_orchestrator.orchestrator.workflow.conditions import resolve_path

from .registry import parse_agent_config

logger = logging.getLogger(__name__)

DATA_EXTRACTOR_AGENT_ID = "dataExtractorAgent_v1"

_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}

_ENTITY_SYSTEM_PROMPT = (
    "You extract entities from text. Reply with a JSON object of the form "
    '{"values": [...]} listing every value of the requested entity type in the '
    "order it appears. Reply with an empty list when there are none."
)


class FieldExtraction(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    output_field_name: str = Field(alias="outputFieldName", min_length=1)
    description: str | None = None
    extraction_method: Literal["regex", "ai_entity"] = Field(alias="extractionMethod")
    regex_pattern: str | None = Field(default=None, alias="regexPattern")
    regex_flags: str = Field(default="gmi", alias="regexFlags")
    ai_entity_type: str | None = Field(default=None, alias="aiEntityType")
    extract_multiple: bool = Field(default=False, alias="extractMultiple")


class DataExtractorConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    source_data_field_path: str = Field(alias="sourceDataFieldPath", min_length=1)
    fields_to_extract: list[FieldExtraction] = Field(alias="fieldsToExtract", min_length=1)


def _compile(pattern: str, flags: str) -> re.Pattern[str]:
    value = 0
    for flag in flags:
        value |= _REGEX_FLAGS.get(flag, 0)
    return re.compile(pattern, value)


def _match_value(match: re.Match[str]) -> str:
    # Prefer the first capture group when the pattern has one.
    if match.re.groups and match.group(1):
        return match.group(1)
    return match.group(0)


@dataclass
class DataExtractorAgent:
    llm: LLMProvider | None = None

    def __call__(self, input_data: dict[str, Any]) -> dict[str, Any]:
        config = parse_agent_config(DataExtractorConfig, input_data)
        extracted: dict[str, Any] = {}
        errors: list[dict[str, str]] = []

        source = resolve_path(input_data, config.source_data_field_path)
        if not isinstance(source, str):
            errors.append(
                {
                    "fieldName": config.source_data_field_path,
                    "message": (
                        "Source text not found or not a string at path: "
                        f"{config.source_data_field_path}"
                    ),
                }
            )
            return {"extractedFields": extracted, "errors": errors}

        for extraction in config.fields_to_extract:
            try:
                values = self._extract(extraction, source)
            except (re.error, LLMResponseError, ValueError) as e:
                errors.append(
                    {
                        "fieldName": extraction.output_field_name,
                        "message": f"Error during extraction: {e}",
                    }
                )
                continue

            if extraction.extract_multiple:
                extracted[extraction.output_field_name] = values
            elif values:
                extracted[extraction.output_field_name] = values[0]

        return {"extractedFields": extracted, "errors": errors}

    def _extract(self, extraction: FieldExtraction, text: str) -> list[Any]:
        if extraction.extraction_method == "regex":
            if not extraction.regex_pattern:
                raise ValueError("Regex pattern is missing for regex extraction method.")
            pattern = _compile(extraction.regex_pattern, extraction.regex_flags)
            return [_match_value(m) for m in pattern.finditer(text)]

        if not extraction.ai_entity_type:
            raise ValueError("AI entity type is missing for AI extraction method.")
        if self.llm is None:
            raise ValueError("AI entity extraction requires a configured LLM provider.")

        logger.debug(
            "Extracting entity with LLM",
            extra={"entity_type": extraction.ai_entity_type, "field": extraction.output_field_name},
        )
        reply = self.llm.complete_json(
            system=_ENTITY_SYSTEM_PROMPT,
            user=f"Entity type: {extraction.ai_entity_type}\n\nText:\n{text}",
        )
        values = reply.get("values")
        if not isinstance(values, list):
            raise LLMResponseError("Model reply has no 'values' list")
        return values
