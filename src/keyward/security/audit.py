"""
Audit Logging.
Created: 2026-10-19

An append-only JSONL trail of grant lifecycle events (client registration,
code issuance, token issuance, rotation and revocation). It never records
secrets or token values, only client ids and event context.
"""

import json
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

logger = logging.getLogger("audit")


class AuditSeverity(str, Enum):
    INFO = "info"  # Normal grant lifecycle
    WARNING = "warning"  # Rejected input (bad credential, reused code)
    ALERT = "alert"  # Likely attack (client mismatch, concurrent token replay)


@dataclass
class AuditEvent:
    """A single audit log entry."""

    id: str
    timestamp: str
    severity: AuditSeverity
    action: str  # e.g. "token_issued", "code_issued"
    target: str  # e.g. "client:<id>"
    context: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        severity: AuditSeverity,
        action: str,
        target: str,
        **context: Any,
    ) -> "AuditEvent":
        return cls(
            id=str(uuid.uuid4()),
            timestamp=datetime.now(tz=UTC).isoformat(),
            severity=severity,
            action=action,
            target=target,
            context=context,
        )


class AuditLogger:
    """
    Append-only audit logger.
    Writes to <keyward home>/audit.jsonl.
    """

    def __init__(self, log_path: Path | None = None):
        if log_path is None:
            from keyward.config import get_config_dir

            log_path = get_config_dir() / "audit.jsonl"
        self.log_path = log_path

    def log(self, event: AuditEvent) -> None:
        """Write an event to the audit log."""
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(asdict(event)) + "\n")
        except OSError as e:
            # Logged, not raised: the grant has already happened
            logger.critical("FAILED TO WRITE AUDIT LOG: %s | action=%s", e, event.action)

    def log_api_event(
        self,
        action: str,
        target: str,
        severity: AuditSeverity = AuditSeverity.INFO,
        **context: Any,
    ) -> str:
        """Helper to log an OAuth endpoint event."""
        event = AuditEvent.create(severity=severity, action=action, target=target, **context)
        self.log(event)
        return event.id

    def read_events(self) -> list[dict[str, Any]]:
        """Return all events in write order (used by tests and `keyward` ops)."""
        if not self.log_path.exists():
            return []
        with open(self.log_path, encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]


# Singleton
_audit_logger: AuditLogger | None = None


def get_audit_logger() -> AuditLogger:
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger


def reset_audit_logger() -> None:
    global _audit_logger
    _audit_logger = None
