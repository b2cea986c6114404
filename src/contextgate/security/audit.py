"""
Access Audit Log.
Created: 2026-10-12

Append-only record of every authorization, permission and protected-resource
decision, written as JSON lines to ~/.contextgate/audit.jsonl.  Writing is
fire-and-forget: a failed write is reported on the system logger and never
changes the outcome already decided for the request.
"""

import json
import logging
import threading
from collections import deque
from collections.abc import Callable
from pathlib import Path

from contextgate.auth.models import AuditRecord, RequestContext

logger = logging.getLogger("audit")


class AuditLogger:
    """
    Append-only audit logger.
    Writes to ~/.contextgate/audit.jsonl in JSONL format.
    """

    def __init__(self, log_path: Path | None = None):
        if log_path is None:
            from contextgate.config import get_config_dir

            log_path = get_config_dir() / "audit.jsonl"
        self.log_path = log_path
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[dict], None]] = []

    def on_record(self, callback: Callable[[dict], None]) -> None:
        """Register a callback to be called after each audit write."""
        self._callbacks.append(callback)

    def record(self, entry: AuditRecord) -> None:
        """Append *entry* to the log. Never raises."""
        try:
            entry_dict = entry.model_dump(mode="json")
            line = json.dumps(entry_dict) + "\n"
            with self._lock:
                self.log_path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.log_path, "a", encoding="utf-8") as f:
                    f.write(line)
        except Exception as e:
            # Fallback to system logger if audit fails (critical failure)
            logger.critical("FAILED TO WRITE AUDIT LOG: %s | Entry: %r", e, entry)
            return

        for cb in self._callbacks:
            try:
                cb(entry_dict)
            except Exception:
                logger.warning("Audit callback failed", exc_info=True)

    def log_access(
        self,
        ctx: RequestContext,
        action: str,
        resource_type: str,
        success: bool,
        user_id: str | None = None,
        client_id: str | None = None,
        resource_id: str | None = None,
        error_message: str | None = None,
    ) -> str:
        """Helper to build and write a record from request context."""
        entry = AuditRecord(
            user_id=user_id,
            client_id=client_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            endpoint=ctx.endpoint,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            success=success,
            error_message=error_message,
        )
        self.record(entry)
        return entry.id

    def read(
        self,
        limit: int = 50,
        user_id: str | None = None,
        client_id: str | None = None,
    ) -> list[AuditRecord]:
        """Return the most recent matching records, oldest first."""
        if not self.log_path.exists():
            return []
        tail: deque[AuditRecord] = deque(maxlen=max(limit, 0))
        with open(self.log_path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    rec = AuditRecord(**json.loads(line))
                except (json.JSONDecodeError, ValueError):
                    logger.warning("Skipping malformed audit line")
                    continue
                if user_id is not None and rec.user_id != user_id:
                    continue
                if client_id is not None and rec.client_id != client_id:
                    continue
                tail.append(rec)
        return list(tail)


# Singleton
_audit_logger: AuditLogger | None = None


def get_audit_logger() -> AuditLogger:
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger
