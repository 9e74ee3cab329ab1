"""Support concierge for GitHub issue triage.

This package implements a stateful, multi-user conversation engine that
triages issues and comments:
- Conversation state persisted inside the bot's own comments
- Guardrails deciding who may interact and which command was issued
- Loop-bounded questioning that converges to finalize or escalate
- A critique gate that scores and refines each pipeline stage
"""
