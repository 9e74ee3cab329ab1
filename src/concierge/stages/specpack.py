"""Spec pack: categories, checklists and validator rules.

The spec pack describes what a complete report looks like for each issue
category. The built-in pack covers common support categories; a YAML
file can override any section:

    categories:
      - name: bug_report
        description: Something is broken
        keywords: [crash, exception, error]
    checklists:
      bug_report:
        completeness_threshold: 70
        required_fields:
          - name: error_message
            weight: 30
            aliases: [error, stack_trace]
            question: Please share the exact error message.
    validators:
      junk_patterns: ["^n/?a$"]
    routing:
      bug_report: [bug]
    escalation_mentions: ["@acme/support"]
    rubrics:
      response:
        rubric_id: response_custom
        stage: response
        items: [...]

Source:
- src/concierge/critique/models.py (RubricDefinition)
"""

import logging
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from src.concierge.critique.models import RubricDefinition, StageName


logger = logging.getLogger(__name__)


UNKNOWN_CATEGORY = "unknown"


class SpecPackError(Exception):
    """Raised when a spec pack file cannot be loaded.

    Attributes:
        message: Human-readable error description.
        cause: The underlying exception that caused the failure.
    """

    def __init__(self, message: str, cause: Optional[Exception] = None):
        self.message = message
        self.cause = cause
        super().__init__(message)


class Category(BaseModel):
    """An issue category with keywords used for fallback scoring."""

    name: str = Field(..., min_length=1)
    description: str = ""
    keywords: List[str] = Field(default_factory=list)


class RequiredField(BaseModel):
    """A field a complete report for a category should contain."""

    name: str = Field(..., min_length=1)
    description: str = ""
    weight: int = Field(default=10, ge=0)
    optional: bool = False
    aliases: List[str] = Field(default_factory=list)
    question: str = ""

    def question_text(self) -> str:
        """Question asked when the field is missing."""
        if self.question:
            return self.question
        label = self.description or self.name.replace("_", " ")
        return f"Could you share the {label}?"


class CategoryChecklist(BaseModel):
    """Weighted required fields for one category."""

    completeness_threshold: int = Field(default=70, ge=0, le=100)
    required_fields: List[RequiredField] = Field(default_factory=list)


class ContradictionRule(BaseModel):
    """Two fields whose values should not contradict each other."""

    name: str
    description: str = ""
    field1: str
    field2: str
    condition: str


class ValidatorRules(BaseModel):
    """Rules used to judge extracted field values."""

    junk_patterns: List[str] = Field(default_factory=list)
    format_validators: Dict[str, str] = Field(default_factory=dict)
    secret_patterns: Optional[List[str]] = None
    contradiction_rules: List[ContradictionRule] = Field(default_factory=list)


class SpecPack(BaseModel):
    """Everything the stages need to know about categories."""

    categories: List[Category] = Field(default_factory=list)
    checklists: Dict[str, CategoryChecklist] = Field(default_factory=dict)
    validators: ValidatorRules = Field(default_factory=ValidatorRules)
    routing: Dict[str, List[str]] = Field(default_factory=dict)
    escalation_mentions: List[str] = Field(default_factory=list)
    rubrics: Dict[StageName, RubricDefinition] = Field(default_factory=dict)

    @property
    def category_names(self) -> List[str]:
        return [c.name for c in self.categories]

    def checklist_for(self, category: str) -> CategoryChecklist:
        """Return the checklist for a category (empty when unknown)."""
        if not category:
            return CategoryChecklist()
        for name, checklist in self.checklists.items():
            if name.lower() == category.lower():
                return checklist
        return CategoryChecklist()

    def labels_for(self, category: str) -> List[str]:
        """Return routing labels for a category."""
        for name, labels in self.routing.items():
            if name.lower() == (category or "").lower():
                return list(labels)
        return []


def _field(name: str, weight: int, question: str, aliases=(), optional=False, description=""):
    return RequiredField(
        name=name,
        weight=weight,
        question=question,
        aliases=list(aliases),
        optional=optional,
        description=description,
    )


_ERROR_FIELD = _field(
    "error_message", 30,
    "Please share the exact error message and any relevant logs or stack traces.",
    aliases=("error", "stack_trace", "logs", "error_output"),
)
_REPRO_FIELD = _field(
    "steps_to_reproduce", 25,
    "What steps lead to the failure?",
    aliases=("repro_steps", "reproduction_steps", "steps", "how_to_reproduce"),
)
_OS_FIELD = _field(
    "operating_system", 15,
    "Which operating system are you using?",
    aliases=("os", "platform"),
)
_VERSION_FIELD = _field(
    "version", 15,
    "Which version are you running (runtime and build tool)?",
    aliases=("app_version", "runtime_version", "sdk_version"),
)
_EXPECTED_FIELD = _field(
    "expected_behavior", 15,
    "What behavior did you expect instead?",
    aliases=("expected", "expected_result"),
    optional=True,
)


DEFAULT_SPEC_PACK = SpecPack(
    categories=[
        Category(
            name="bug_report",
            description="Incorrect or unexpected runtime behavior",
            keywords=["bug", "crash", "exception", "error", "broken", "fails", "stack trace", "traceback"],
        ),
        Category(
            name="build_issue",
            description="Compilation or build pipeline failures",
            keywords=["build", "compile", "compilation", "msbuild", "gradle", "webpack", "linker"],
        ),
        Category(
            name="dependency_conflict",
            description="Package resolution and version conflicts",
            keywords=["dependency", "dependencies", "package", "npm", "pip", "nuget", "version conflict", "lock file"],
        ),
        Category(
            name="configuration",
            description="Settings and configuration problems",
            keywords=["config", "configuration", "setting", "settings", "yaml", "env var", "environment variable"],
        ),
        Category(
            name="environment_setup",
            description="Installation and local setup problems",
            keywords=["install", "setup", "prerequisite", "docker", "wsl", "path"],
        ),
        Category(
            name="documentation",
            description="Missing or incorrect documentation",
            keywords=["docs", "documentation", "readme", "typo", "example", "guide"],
        ),
        Category(
            name="feature_request",
            description="New functionality or enhancement requests",
            keywords=["feature", "enhancement", "support for", "would be nice", "proposal", "request"],
        ),
    ],
    checklists={
        "bug_report": CategoryChecklist(
            completeness_threshold=70,
            required_fields=[_ERROR_FIELD, _REPRO_FIELD, _OS_FIELD, _VERSION_FIELD, _EXPECTED_FIELD],
        ),
        "build_issue": CategoryChecklist(
            completeness_threshold=70,
            required_fields=[
                _field(
                    "build_output", 35,
                    "Please share the build output and any error messages.",
                    aliases=("build_log", "error_message", "error", "logs"),
                ),
                _field(
                    "build_tool", 25,
                    "What build tool and version are you using?",
                    aliases=("build_tool_version", "tool"),
                ),
                _OS_FIELD,
                _REPRO_FIELD,
            ],
        ),
        "dependency_conflict": CategoryChecklist(
            completeness_threshold=70,
            required_fields=[
                _field(
                    "package_manager", 25,
                    "Which package manager are you using (npm, pip, maven, etc.)?",
                    aliases=("package_manager_version",),
                ),
                _field(
                    "conflicting_packages", 35,
                    "Which packages are conflicting?",
                    aliases=("packages", "dependencies"),
                ),
                _field(
                    "error_message", 25,
                    "Please share the resolver output or error message.",
                    aliases=("error", "logs"),
                ),
                _VERSION_FIELD,
            ],
        ),
        "configuration": CategoryChecklist(
            completeness_threshold=70,
            required_fields=[
                _field(
                    "configuration_file", 30,
                    "Which configuration file or setting are you trying to modify?",
                    aliases=("config_file", "setting", "config"),
                ),
                _field(
                    "attempted_configuration", 30,
                    "What configuration have you tried so far?",
                    aliases=("tried", "current_configuration"),
                ),
                _field(
                    "actual_behavior", 25,
                    "What behavior do you expect vs. what actually happens?",
                    aliases=("actual", "behavior"),
                ),
                _VERSION_FIELD,
            ],
        ),
        "environment_setup": CategoryChecklist(
            completeness_threshold=70,
            required_fields=[
                _field(
                    "failing_step", 30,
                    "Which setup step is failing?",
                    aliases=("step", "setup_step"),
                ),
                _OS_FIELD,
                _field(
                    "setup_logs", 30,
                    "Please share any setup logs or error output.",
                    aliases=("logs", "error_message", "error"),
                ),
                _field(
                    "shell", 10,
                    "Which shell or terminal are you using?",
                    aliases=("terminal",),
                    optional=True,
                ),
            ],
        ),
        "documentation": CategoryChecklist(
            completeness_threshold=60,
            required_fields=[
                _field(
                    "documentation_location", 40,
                    "Which documentation file or section needs to be updated?",
                    aliases=("page", "section", "doc", "url"),
                ),
                _field(
                    "problem_description", 40,
                    "What is currently incorrect or missing in the documentation?",
                    aliases=("problem", "description", "issue"),
                ),
                _field(
                    "suggested_change", 20,
                    "What should the documentation say instead?",
                    aliases=("suggestion", "proposed_change"),
                    optional=True,
                ),
            ],
        ),
        "feature_request": CategoryChecklist(
            completeness_threshold=60,
            required_fields=[
                _field(
                    "problem_statement", 40,
                    "What problem would this feature solve for you?",
                    aliases=("problem", "motivation", "use_case"),
                ),
                _field(
                    "proposed_solution", 40,
                    "How do you envision this feature working?",
                    aliases=("solution", "proposal", "describe_the_solution"),
                ),
                _field(
                    "alternatives_considered", 20,
                    "Have you considered any alternative approaches?",
                    aliases=("alternatives",),
                    optional=True,
                ),
            ],
        ),
    },
    validators=ValidatorRules(
        junk_patterns=[
            r"^(n/?a|none|nil|null|tbd|todo|idk|unknown|same|test|asdf)$",
            r"^[?.\-_*]+$",
            r"^(see above|see below|no idea)$",
        ],
        format_validators={"version": r"\d+(\.\d+)*"},
        contradiction_rules=[
            ContradictionRule(
                name="windows_bash",
                description="Shell does not match operating system",
                field1="operating_system",
                field2="shell",
                condition="windows_with_bash_native",
            ),
            ContradictionRule(
                name="runtime_sdk_versions",
                description="Runtime and SDK versions look incompatible",
                field1="runtime_version",
                field2="sdk_version",
                condition="version_mismatch",
            ),
        ],
    ),
    routing={
        "bug_report": ["bug"],
        "build_issue": ["build"],
        "dependency_conflict": ["dependencies"],
        "configuration": ["configuration"],
        "environment_setup": ["setup"],
        "documentation": ["documentation"],
        "feature_request": ["enhancement"],
    },
)


def load_spec_pack(path: Optional[str]) -> SpecPack:
    """Load a spec pack, overlaying a YAML file on the built-in pack.

    Sections present in the file replace the built-in section entirely;
    absent sections keep their defaults.

    Args:
        path: Path to the YAML file, or None for the built-in pack.

    Returns:
        The resulting SpecPack.

    Raises:
        SpecPackError: If the file cannot be read, parsed or validated.
    """
    if not path:
        return DEFAULT_SPEC_PACK

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise SpecPackError(f"Spec pack file not found: {path}", cause=e)
    except yaml.YAMLError as e:
        raise SpecPackError(f"Failed to parse YAML: {e}", cause=e)

    if not data:
        logger.warning("Spec pack file is empty, using defaults", extra={"path": path})
        return DEFAULT_SPEC_PACK

    if not isinstance(data, dict):
        raise SpecPackError("Spec pack file must contain a mapping")

    merged = DEFAULT_SPEC_PACK.model_dump()
    merged.update(data)
    try:
        pack = SpecPack.model_validate(merged)
    except ValidationError as e:
        raise SpecPackError(f"Invalid spec pack: {e.error_count()} errors", cause=e)

    logger.info(
        "Loaded spec pack",
        extra={"path": path, "categories": len(pack.categories), "checklists": len(pack.checklists)},
    )
    return pack
