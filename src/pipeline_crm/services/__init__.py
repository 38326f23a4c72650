"""Database, audit, and email services shared across the automation layer."""

from pipeline_crm.services.audit import AuditLog, AuditRecord
from pipeline_crm.services.database import Database, run_in_session, session_scope
from pipeline_crm.services.email import EmailMessage, EmailResult, build_email_sender
