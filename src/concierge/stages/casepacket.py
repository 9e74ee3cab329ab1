"""Deterministic case packet extraction and completeness scoring.

A case packet is the set of key/value facts gathered from the issue body
and the participant's comments. Facts come from two shapes of text:

- GitHub issue forms: ``### Heading`` followed by the answer
- Free-form ``key: value`` lines

Keys are normalized to snake_case. Scoring is checklist-driven: a present
and valid field earns its full weight, a present but invalid field earns a
third of it, and a missing field earns nothing.

Source:
- src/concierge/stages/specpack.py (CategoryChecklist, ValidatorRules)
"""

import logging
import re
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from pydantic import BaseModel, Field

from src.concierge.stages.specpack import (
    CategoryChecklist,
    ContradictionRule,
    RequiredField,
    ValidatorRules,
)


logger = logging.getLogger(__name__)


_HEADING_PATTERN = re.compile(r"^#{2,6}\s+(.+?)\s*$")
_KEY_VALUE_PATTERN = re.compile(r"^\s*[-*]?\s*([A-Za-z][A-Za-z0-9 _/().-]{0,40}?)\s*[:=]\s*(.+?)\s*$")
_NO_RESPONSE = "_no response_"
_MAX_KEY_WORDS = 5
_MAX_VALUE_LENGTH = 2000


def normalize_key(key: str) -> str:
    """Normalize a heading or key to snake_case."""
    cleaned = re.sub(r"\(.*?\)", "", key.lower())
    cleaned = re.sub(r"[^a-z0-9]+", "_", cleaned)
    return cleaned.strip("_")


def parse_issue_form(body: str) -> Dict[str, str]:
    """Extract ``### Heading`` / answer pairs from an issue form body."""
    fields: Dict[str, str] = {}
    current: Optional[str] = None
    lines: List[str] = []

    def flush() -> None:
        if current is None:
            return
        value = "\n".join(lines).strip()
        if value and value.lower() != _NO_RESPONSE:
            fields[current] = value[:_MAX_VALUE_LENGTH]

    for line in (body or "").splitlines():
        match = _HEADING_PATTERN.match(line)
        if match:
            flush()
            current = normalize_key(match.group(1)) or None
            lines = []
        elif current is not None:
            lines.append(line)
    flush()
    return fields


def extract_key_value_pairs(text: str) -> Dict[str, str]:
    """Extract ``key: value`` lines from free-form text.

    URLs and sentences with many words before the colon are skipped.
    """
    fields: Dict[str, str] = {}
    in_code_block = False
    for line in (text or "").splitlines():
        if line.strip().startswith("```"):
            in_code_block = not in_code_block
            continue
        if in_code_block:
            continue
        match = _KEY_VALUE_PATTERN.match(line)
        if not match:
            continue
        raw_key, value = match.group(1), match.group(2)
        if value.startswith("//") or len(raw_key.split()) > _MAX_KEY_WORDS:
            continue
        key = normalize_key(raw_key)
        if key:
            fields[key] = value[:_MAX_VALUE_LENGTH]
    return fields


def extract_fields(texts: Iterable[str]) -> Dict[str, str]:
    """Extract facts from several texts; later texts override earlier ones."""
    fields: Dict[str, str] = {}
    for text in texts:
        fields.update(parse_issue_form(text))
        fields.update(extract_key_value_pairs(text))
    return fields


def resolve_field(fields: Mapping[str, str], required: RequiredField) -> Optional[str]:
    """Find a required field's value by name or alias."""
    for key in (required.name, *required.aliases):
        value = fields.get(normalize_key(key))
        if value and value.strip():
            return value
    return None


class ScoringResult(BaseModel):
    """Checklist completeness for one category."""

    score: int = Field(default=0, ge=0, le=100)
    threshold: int = 70
    is_actionable: bool = False
    missing_fields: List[str] = Field(default_factory=list)
    invalid_fields: List[str] = Field(default_factory=list)
    issues: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class FieldValidators:
    """Judges extracted values against the spec pack's validator rules."""

    def __init__(self, rules: ValidatorRules):
        self.rules = rules
        self._junk = [re.compile(p, re.IGNORECASE) for p in rules.junk_patterns]
        self._formats = [
            (key.lower(), re.compile(pattern)) for key, pattern in rules.format_validators.items()
        ]

    def is_junk(self, value: str) -> bool:
        stripped = (value or "").strip()
        if not stripped:
            return True
        return any(p.search(stripped) for p in self._junk)

    def validate(self, field_name: str, value: str) -> Tuple[bool, str]:
        """Return (is_valid, reason) for a field value."""
        if self.is_junk(value):
            return False, f"Field '{field_name}' contains a placeholder value"
        for key, pattern in self._formats:
            if key in field_name.lower() and not pattern.search(value):
                return False, f"Field '{field_name}' has an unexpected format"
        return True, ""

    def contradictions(self, fields: Mapping[str, str]) -> List[str]:
        """Return warnings for contradicting field pairs."""
        warnings: List[str] = []
        for rule in self.rules.contradiction_rules:
            first = fields.get(normalize_key(rule.field1))
            second = fields.get(normalize_key(rule.field2))
            if first and second and _contradicts(rule, first, second):
                warnings.append(rule.description or f"Contradiction: {rule.name}")
        return warnings


def _major_version(value: str) -> Optional[int]:
    match = re.search(r"(\d+)(?:\.\d+)*", value)
    return int(match.group(1)) if match else None


def _contradicts(rule: ContradictionRule, first: str, second: str) -> bool:
    condition = rule.condition.lower()
    if condition == "windows_with_bash_native":
        return "windows" in first.lower() and "bash" in second.lower() and "wsl" not in second.lower()
    if condition == "version_mismatch":
        a, b = _major_version(first), _major_version(second)
        return a is not None and b is not None and a != b
    logger.debug("Unknown contradiction condition", extra={"condition": rule.condition})
    return False


class CompletenessScorer:
    """Scores a case packet against a category checklist."""

    INVALID_WEIGHT_FRACTION = 1 / 3

    def __init__(self, validators: FieldValidators):
        self.validators = validators

    def score(self, fields: Mapping[str, str], checklist: CategoryChecklist) -> ScoringResult:
        """Score extracted fields.

        Args:
            fields: Normalized case packet fields.
            checklist: Checklist for the issue's category.

        Returns:
            ScoringResult; an empty checklist scores 100.
        """
        required = checklist.required_fields
        total = sum(f.weight for f in required)
        if total <= 0:
            return ScoringResult(
                score=100,
                threshold=checklist.completeness_threshold,
                is_actionable=True,
                warnings=self.validators.contradictions(fields),
            )

        earned = 0.0
        missing: List[str] = []
        invalid: List[str] = []
        issues: List[str] = []

        for item in required:
            value = resolve_field(fields, item)
            if value is None:
                if not item.optional:
                    missing.append(item.name)
                continue
            valid, reason = self.validators.validate(item.name, value)
            if valid:
                earned += item.weight
            else:
                earned += item.weight * self.INVALID_WEIGHT_FRACTION
                invalid.append(item.name)
                issues.append(reason)

        score = int(round(earned / total * 100))
        return ScoringResult(
            score=max(0, min(100, score)),
            threshold=checklist.completeness_threshold,
            is_actionable=score >= checklist.completeness_threshold,
            missing_fields=missing,
            invalid_fields=invalid,
            issues=issues,
            warnings=self.validators.contradictions(fields),
        )
