"""Conversation state persistence inside comment text.

The engine has no database: each invocation recovers state from the
thread's comment history and writes a fresh snapshot into the comment it
posts. The snapshot is a JSON document wrapped in an HTML comment that
GitHub does not render:

    <!-- supportbot-state
    {"schema_version": 2, "thread_key": "acme/widgets#42", ...}
    -->

When the JSON exceeds the compression threshold (2000 bytes by default)
the payload becomes ``compressed:`` followed by base64(gzip(JSON)).

Extraction scans for every marker in the supplied text and decodes the
last one. Older writers used a fenced code block with the same tag; that
form is still accepted on read but never written.

Requirements:
- extract(embed("", s)) == s, including compressed payloads
- Any decode error yields None and never raises
- Unknown JSON fields are ignored on read

Source:
- src/concierge/state/models.py (ConversationState)
- src/concierge/config.py (compression_threshold_bytes)
"""

import base64
import gzip
import logging
import re
import zlib
from typing import List, Optional

from pydantic import ValidationError

from src.concierge.config import OrchestrationConfig
from src.concierge.state.models import STATE_SCHEMA_VERSION, ConversationState


logger = logging.getLogger(__name__)


STATE_MARKER_PREFIX = "<!-- supportbot-state\n"
STATE_MARKER_SUFFIX = "\n-->"
COMPRESSED_TAG = "compressed:"

DEFAULT_COMPRESSION_THRESHOLD_BYTES = 2000

_HTML_MARKER_PATTERN = re.compile(
    r"<!--\s*supportbot-state\s*\n(?P<payload>.*?)\n\s*-->",
    re.DOTALL,
)

_FENCED_MARKER_PATTERN = re.compile(
    r"```supportbot-state\s*\n(?P<payload>.*?)\n\s*```",
    re.DOTALL,
)


class StateDecodeError(Exception):
    """Raised internally when a marker payload cannot be decoded.

    Attributes:
        message: Human-readable error description.
        cause: The underlying exception that caused the failure.
    """

    def __init__(self, message: str, cause: Optional[Exception] = None):
        self.message = message
        self.cause = cause
        super().__init__(message)


class StateStore:
    """Embeds and recovers ConversationState in free-form comment text.

    Attributes:
        compression_threshold_bytes: Serialized size above which the
            payload is gzip-compressed and base64-encoded.
        max_asked_fields_history: Asked fields kept per user by prune().
        max_shared_findings: Shared findings kept per thread by prune().

    Example:
        >>> store = StateStore()
        >>> body = store.embed("Thanks for the report!", state)
        >>> store.extract(body) == state
        True
    """

    def __init__(
        self,
        compression_threshold_bytes: int = DEFAULT_COMPRESSION_THRESHOLD_BYTES,
        max_asked_fields_history: int = 20,
        max_shared_findings: int = 50,
    ):
        self.compression_threshold_bytes = compression_threshold_bytes
        self.max_asked_fields_history = max_asked_fields_history
        self.max_shared_findings = max_shared_findings

    @classmethod
    def from_config(cls, config: OrchestrationConfig) -> "StateStore":
        """Build a store from the orchestration configuration."""
        return cls(
            compression_threshold_bytes=config.compression_threshold_bytes,
            max_asked_fields_history=config.max_asked_fields_history,
            max_shared_findings=config.max_shared_findings,
        )

    # -------------------------------------------------------------------------
    # Encoding
    # -------------------------------------------------------------------------
    def serialize(self, state: ConversationState) -> str:
        """Serialize state into a marker payload.

        Angle brackets are escaped as JSON unicode escapes so user text
        stored in the state can never terminate the surrounding HTML
        comment or open a new marker.

        Args:
            state: The state to serialize.

        Returns:
            Raw JSON, or ``compressed:`` + base64(gzip(JSON)) when the JSON
            exceeds the compression threshold.
        """
        json_text = state.model_dump_json()
        json_text = json_text.replace("<", "\\u003c").replace(">", "\\u003e")
        raw = json_text.encode("utf-8")

        if len(raw) <= self.compression_threshold_bytes:
            return json_text

        compressed = gzip.compress(raw, mtime=0)
        encoded = base64.b64encode(compressed).decode("ascii")
        logger.debug(
            "Compressed state payload",
            extra={"raw_bytes": len(raw), "encoded_bytes": len(encoded)},
        )
        return f"{COMPRESSED_TAG}{encoded}"

    def deserialize(self, payload: str) -> ConversationState:
        """Decode a marker payload back into state.

        Args:
            payload: Text found between the marker prefix and suffix.

        Returns:
            The decoded ConversationState.

        Raises:
            StateDecodeError: If the payload is corrupt or was written by a
                newer schema version.
        """
        text = payload.strip()
        if text[: len(COMPRESSED_TAG)].lower() == COMPRESSED_TAG:
            try:
                compressed = base64.b64decode(text[len(COMPRESSED_TAG):].strip(), validate=True)
                text = gzip.decompress(compressed).decode("utf-8")
            except (ValueError, OSError, EOFError, zlib.error) as e:
                raise StateDecodeError(f"Invalid compressed payload: {e}", cause=e)

        try:
            state = ConversationState.model_validate_json(text)
        except ValidationError as e:
            raise StateDecodeError(f"Invalid state JSON: {e.error_count()} errors", cause=e)

        if state.schema_version > STATE_SCHEMA_VERSION:
            raise StateDecodeError(
                f"Unsupported state schema version: {state.schema_version}"
            )
        return state

    def embed(self, visible_text: str, state: ConversationState) -> str:
        """Append a state marker to visible text.

        Any markers already present in ``visible_text`` are removed first
        so the output carries exactly one marker.

        Args:
            visible_text: The rendered comment text.
            state: The state to persist.

        Returns:
            The visible text followed by the marker on its own block.
        """
        body = self.remove(visible_text)
        marker = f"{STATE_MARKER_PREFIX}{self.serialize(state)}{STATE_MARKER_SUFFIX}"
        if not body:
            return marker
        return f"{body}\n\n{marker}"

    # -------------------------------------------------------------------------
    # Decoding
    # -------------------------------------------------------------------------
    def find_payloads(self, text: str) -> List[str]:
        """Return every marker payload in text, in document order."""
        if not text:
            return []
        matches = [
            *_HTML_MARKER_PATTERN.finditer(text),
            *_FENCED_MARKER_PATTERN.finditer(text),
        ]
        matches.sort(key=lambda m: m.start())
        return [m.group("payload") for m in matches]

    def contains_state(self, text: Optional[str]) -> bool:
        """Return True if text carries at least one state marker."""
        return bool(text) and bool(self.find_payloads(text))

    def extract(self, text: Optional[str]) -> Optional[ConversationState]:
        """Recover state from the last marker in text.

        Args:
            text: Comment body or any text that may contain markers.

        Returns:
            The decoded state, or None when no marker is present or the
            last marker cannot be decoded. Callers treat None exactly like
            a thread with no prior state.
        """
        if not text:
            return None

        payloads = self.find_payloads(text)
        if not payloads:
            return None

        try:
            return self.deserialize(payloads[-1])
        except StateDecodeError as e:
            logger.warning(
                "Discarding unreadable state marker",
                extra={"error": e.message, "marker_count": len(payloads)},
            )
            return None

    def remove(self, text: Optional[str]) -> str:
        """Strip every state marker from text."""
        if not text:
            return ""
        stripped = _HTML_MARKER_PATTERN.sub("", text)
        stripped = _FENCED_MARKER_PATTERN.sub("", stripped)
        return stripped.rstrip()

    # -------------------------------------------------------------------------
    # Housekeeping
    # -------------------------------------------------------------------------
    def prune(self, state: ConversationState) -> ConversationState:
        """Bound the size of state before it is embedded.

        Keeps the most recent asked fields per user and the most recent
        shared findings. Loop counters and flags are never touched.

        Args:
            state: The state to prune.

        Returns:
            A pruned copy (or the same object when nothing exceeds limits).
        """
        conversations = {}
        changed = False
        for username, conversation in state.user_conversations.items():
            if len(conversation.asked_fields) > self.max_asked_fields_history:
                kept = conversation.asked_fields[-self.max_asked_fields_history:]
                conversation = conversation.model_copy(update={"asked_fields": kept})
                changed = True
            conversations[username] = conversation

        findings = state.shared_findings
        if len(findings) > self.max_shared_findings:
            findings = findings[-self.max_shared_findings:]
            changed = True

        if not changed:
            return state

        logger.info(
            "Pruned conversation state",
            extra={"thread_key": state.thread_key},
        )
        return state.model_copy(
            update={"user_conversations": conversations, "shared_findings": findings}
        )
