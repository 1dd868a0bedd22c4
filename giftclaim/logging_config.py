"""
Logging for the gift claim authorizer.

One JSON object per line, tagged with the id of the request being served.
Claim decisions go through ``audit_log`` so every request leaves the same
trail: a CLAIM_VALIDATION_REQUEST entry followed by a CLAIM_DECISION (and a
SECURITY_EVENT or OPERATIONAL_ERROR where one applies).

Passwords, salts, credentials and gate data are never written. Fields with
those names are redacted by the formatter even if a caller passes them.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Iterable, Optional

from .util import short_address

request_id_var: ContextVar[str] = ContextVar("giftclaim_request_id", default="")

REDACTED = "[REDACTED]"
SENSITIVE_FIELDS = frozenset({
    "password", "salt", "gate_data", "gateData", "authorization", "credential", "token",
})

_SEVERITY_LEVELS = {
    "low": logging.INFO,
    "medium": logging.WARNING,
    "high": logging.ERROR,
    "critical": logging.CRITICAL,
}

NOISY_LOGGERS = ("urllib3", "requests", "httpx")


def _redact(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {k: (REDACTED if k in SENSITIVE_FIELDS else v) for k, v in fields.items()}


class JsonLogFormatter(logging.Formatter):
    """Render records as single-line JSON with UTC millisecond timestamps."""

    converter = time.gmtime

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": f"{self.formatTime(record, '%Y-%m-%dT%H:%M:%S')}.{int(record.msecs):03d}Z",
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "at": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        request_id = request_id_var.get()
        if request_id:
            entry["request_id"] = request_id

        fields = getattr(record, "fields", None)
        if fields:
            entry.update(_redact(fields))

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def log_fields(**fields: Any) -> Dict[str, Any]:
    """``extra=`` mapping whose keys JsonLogFormatter merges into the entry."""
    return {"fields": fields}


class AuditLogger:
    """Typed claim events on the ``giftclaim.audit`` logger."""

    def __init__(self, name: str = "giftclaim.audit"):
        self._logger = logging.getLogger(name)

    def _emit(self, level: int, event: str, summary: str, **fields) -> None:
        self._logger.log(level, "%s: %s", event, summary, extra=log_fields(event_type=event, **fields))

    def claim_request(self, token_id: Any, claimer_address: Any) -> None:
        self._emit(
            logging.INFO,
            "CLAIM_VALIDATION_REQUEST",
            "claim validation started",
            token_id=str(token_id)[:80],
            claimer=short_address(claimer_address),
        )

    def claim_decision(
        self,
        token_id: Any,
        outcome: str,
        reason: Optional[str] = None,
        gift_id: Optional[int] = None,
        checks: Optional[Iterable[str]] = None
    ) -> None:
        """Record how a request was decided and which checks it passed."""
        self._emit(
            logging.INFO if outcome == "authorized" else logging.WARNING,
            "CLAIM_DECISION",
            outcome if reason is None else f"{outcome} ({reason})",
            token_id=str(token_id)[:80],
            gift_id=gift_id,
            outcome=outcome,
            reason=reason,
            checks=list(checks or ()),
        )

    def security_event(self, event: str, severity: str = "medium", **details) -> None:
        self._emit(
            _SEVERITY_LEVELS.get(severity, logging.WARNING),
            "SECURITY_EVENT",
            event,
            security_event=event,
            severity=severity,
            **details
        )

    def operational_error(self, reason: str, correlation_id: str, detail: str, **details) -> None:
        """
        Record a ledger or configuration failure.

        ``detail`` carries the underlying error text, which callers never
        see; the correlation id links it to the response they got.
        """
        self._emit(
            logging.ERROR,
            "OPERATIONAL_ERROR",
            f"{reason} [{correlation_id}]",
            reason=reason,
            correlation_id=correlation_id,
            detail=detail,
            **details
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Install handlers on the root logger, replacing any present.

    Args:
        level: Root log level name
        json_format: JSON lines if true, plain text otherwise
        log_file: Also append to this file when given
    """
    if json_format:
        formatter: logging.Formatter = JsonLogFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), handlers=handlers, force=True)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind a request id (a fresh one when None) to the current context."""
    request_id = request_id or uuid.uuid4().hex
    request_id_var.set(request_id)
    return request_id


def get_request_id() -> str:
    """Current request id; binds a fresh one if none is set yet."""
    return request_id_var.get() or set_request_id()


audit_log = AuditLogger()
