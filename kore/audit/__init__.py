"""Audit trail for cross-agency access."""

from .sinks import (
    AuditEvent,
    AuditSink,
    CompositeAuditSink,
    DatabaseAuditSink,
    LoggingAuditSink,
    MemoryAuditSink,
    configure_audit_sink,
    get_audit_sink,
)

__all__ = [
    "AuditEvent",
    "AuditSink",
    "CompositeAuditSink",
    "DatabaseAuditSink",
    "LoggingAuditSink",
    "MemoryAuditSink",
    "configure_audit_sink",
    "get_audit_sink",
]
