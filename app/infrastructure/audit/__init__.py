"""
Audit trail for reviewer actions on draft replies.
"""

from app.infrastructure.audit.audit_logger import AuditLogger, audit_logger

__all__ = ["AuditLogger", "audit_logger"]
