"""Secret redaction for user-authored text.

User text is passed through SecretRedactor before it is sent to the
completion endpoint or quoted in a composed comment. Three passes run
in order:

1. Configured patterns (API keys, passwords, bearer tokens, ...)
2. High-entropy base64 blobs
3. Long hex digests and opaque tokens

Each match is replaced with ``[REDACTED]`` and reported as a finding
carrying a short preview for logging.
"""

import re
from typing import Iterable, List, NamedTuple, Optional


REDACTION_PLACEHOLDER = "[REDACTED]"

DEFAULT_SECRET_PATTERNS = (
    r"(?:api[_-]?key|apikey)\s*[:=]\s*\S+",
    r"(?:password|passwd|pwd)\s*[:=]\s*\S+",
    r"(?:secret|client[_-]?secret)\s*[:=]\s*\S+",
    r"bearer\s+[A-Za-z0-9\-._~+/]+=*",
    r"gh[pousr]_[A-Za-z0-9]{20,}",
    r"AKIA[0-9A-Z]{16}",
    r"-----BEGIN [A-Z ]*PRIVATE KEY-----",
)

_BASE64_PATTERN = re.compile(r"[A-Za-z0-9+/]{20,}={0,2}(?=\s|$)")
_BASE64_SHAPE = re.compile(r"^(?:[A-Za-z0-9+/]{4})*(?:[A-Za-z0-9+/]{2}==|[A-Za-z0-9+/]{3}=)?$")
_HASH_TOKEN_PATTERN = re.compile(r"\b[a-fA-F0-9]{32,}\b|\b[A-Za-z0-9_-]{40,}\b")

_PREVIEW_LENGTH = 20


class RedactionResult(NamedTuple):
    """Redacted text and the findings that produced it."""

    text: str
    findings: List[str]


def _secret_type(secret: str) -> str:
    lower = secret.lower()
    if "api" in lower and ("key" in lower or "token" in lower):
        return "API Key"
    if "bearer" in lower:
        return "Bearer Token"
    if "password" in lower or "passwd" in lower or "pwd" in lower:
        return "Password"
    if "secret" in lower:
        return "Secret"
    if "private key" in lower:
        return "Private Key"
    if "token" in lower:
        return "Token"
    return "Sensitive Data"


def _preview(secret: str) -> str:
    trimmed = secret.strip()
    if not trimmed:
        return "[empty]"
    return trimmed[:_PREVIEW_LENGTH]


def _is_likely_base64_secret(value: str) -> bool:
    if len(value) < 20 or not _BASE64_SHAPE.match(value):
        return False
    # Encoded data uses many distinct characters; prose rarely does
    return len(set(value)) >= 30


def _is_repetitive(value: str) -> bool:
    return len(set(value.lower())) <= 2


class SecretRedactor:
    """Detects and redacts secrets in free text.

    Attributes:
        patterns: Compiled case-insensitive secret patterns.
    """

    def __init__(self, patterns: Optional[Iterable[str]] = None):
        source = DEFAULT_SECRET_PATTERNS if patterns is None else tuple(patterns)
        self.patterns = [re.compile(p, re.IGNORECASE) for p in source]

    def redact(self, text: Optional[str]) -> RedactionResult:
        """Redact every detected secret from text.

        Args:
            text: Text to scan; None is treated as empty.

        Returns:
            RedactionResult with the redacted text and one finding per
            redacted value.
        """
        if not text or not text.strip():
            return RedactionResult(text or "", [])

        findings: List[str] = []
        redacted = text

        for pattern in self.patterns:
            for match in pattern.finditer(redacted):
                value = match.group(0)
                if not value.strip():
                    continue
                findings.append(f"Found {_secret_type(value)}: {_preview(value)}...")
            redacted = pattern.sub(REDACTION_PLACEHOLDER, redacted)

        for match in list(_BASE64_PATTERN.finditer(redacted)):
            value = match.group(0).strip()
            if _is_likely_base64_secret(value):
                findings.append(f"Found Base64 Encoded Data: {_preview(value)}...")
                redacted = redacted.replace(value, REDACTION_PLACEHOLDER)

        for match in list(_HASH_TOKEN_PATTERN.finditer(redacted)):
            value = match.group(0)
            if len(value) >= 32 and not _is_repetitive(value):
                findings.append(f"Found Hash/Token: {_preview(value)}...")
                redacted = redacted.replace(value, REDACTION_PLACEHOLDER)

        return RedactionResult(redacted, findings)
