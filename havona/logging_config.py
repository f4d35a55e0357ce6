"""
Logging configuration for the Havona persistor.

Provides structured JSON logging for audit trails and debugging. Content
bytes and raw signatures are never logged; only digests and lengths.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Optional

# Context variable for request ID tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    One JSON object per line, suitable for log aggregation.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class AuditLogger:
    """
    Logger for store audit events.

    Records committed writes, archived versions, access changes and rejected
    authorizations alongside the signed event log.
    """

    def __init__(self, name: str = "havona.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, **kwargs) -> None:
        extra = {
            "event_type": event_type,
            "request_id": request_id_var.get(),
            **kwargs
        }

        record = self._logger.makeRecord(
            self._logger.name,
            level,
            "",
            0,
            f"{event_type}: {kwargs.get('message', '')}",
            (),
            None
        )
        record.extra_fields = extra
        self._logger.handle(record)

    def write_committed(
        self,
        key: str,
        identity: str,
        length: int,
        digest: str,
        operation: str
    ) -> None:
        """Log a committed write."""
        self._log(
            logging.INFO,
            "WRITE_COMMITTED",
            key=key,
            identity=identity,
            length=length,
            digest=digest,
            operation=operation,
            message=f"{operation} wrote {key} for {identity}"
        )

    def version_archived(self, key: str, version: int, old_digest: str) -> None:
        self._log(
            logging.INFO,
            "VERSION_ARCHIVED",
            key=key,
            version=version,
            old_digest=old_digest,
            message=f"Archived version {version} of {key}"
        )

    def access_changed(self, key: str, identity: str, granted: bool) -> None:
        self._log(
            logging.INFO,
            "ACCESS_GRANTED" if granted else "ACCESS_REVOKED",
            key=key,
            identity=identity,
            message=f"Access {'granted to' if granted else 'revoked from'} {identity} on {key}"
        )

    def authorization_rejected(
        self,
        operation: str,
        caller: str,
        code: str,
        reason: str
    ) -> None:
        """Log a rejected store call."""
        self._log(
            logging.WARNING,
            "AUTHORIZATION_REJECTED",
            operation=operation,
            caller=caller,
            code=code,
            reason=reason,
            message=f"{operation} rejected for {caller}: {code}"
        )

    def security_event(
        self,
        event: str,
        severity: str = "medium",
        **details
    ) -> None:
        """Log a security-relevant event."""
        level = {
            "low": logging.INFO,
            "medium": logging.WARNING,
            "high": logging.ERROR,
            "critical": logging.CRITICAL
        }.get(severity, logging.WARNING)

        self._log(
            level,
            "SECURITY_EVENT",
            security_event=event,
            severity=severity,
            **details,
            message=f"Security event: {event}"
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting
        log_file: Optional file path for log output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Set the request ID for the current context.

    Args:
        request_id: Request ID to set, or None to generate one

    Returns:
        The request ID that was set
    """
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def get_request_id() -> str:
    return request_id_var.get()


# Global audit logger instance
audit_log = AuditLogger()
