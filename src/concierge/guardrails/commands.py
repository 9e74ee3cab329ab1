"""Control command detection.

Users steer the concierge with two commands in their comments:
- /stop: opt out; the user's conversation is finalized
- /diagnose: start a fresh conversation (the only way for a user other
  than the issue author to engage)

Detection is a case-insensitive substring match on the newly arrived
text only. Historical thread text is never scanned because the bot's own
comments mention both commands in their instructions.
"""

import re

from pydantic import BaseModel


STOP_COMMAND = "/stop"
DIAGNOSE_COMMAND = "/diagnose"

_COMMAND_TOKEN_PATTERN = re.compile(r"\B/(diagnose|stop)\b", re.IGNORECASE)


class CommandInfo(BaseModel):
    """Commands found in a piece of text."""

    has_stop_command: bool = False
    has_diagnose_command: bool = False

    @property
    def has_any(self) -> bool:
        return self.has_stop_command or self.has_diagnose_command


class CommandDetector:
    """Pure detector for /stop and /diagnose."""

    def detect(self, text: str) -> CommandInfo:
        """Detect commands in newly arrived text.

        Args:
            text: The new comment body, or the issue body for issue events.

        Returns:
            CommandInfo with one flag per recognized command.
        """
        if not text:
            return CommandInfo()
        lowered = text.lower()
        return CommandInfo(
            has_stop_command=STOP_COMMAND in lowered,
            has_diagnose_command=DIAGNOSE_COMMAND in lowered,
        )


def strip_commands(text: str) -> str:
    """Remove command tokens and return the remaining trimmed text."""
    if not text:
        return ""
    return _COMMAND_TOKEN_PATTERN.sub("", text).strip()
