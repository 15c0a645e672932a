# /backend/wardround/models/audit.py

from pydantic import Field
from typing import Any, Dict, Optional
from datetime import datetime
from enum import Enum

from wardround.models.base import CamelModel


class AuditAction(str, Enum):
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    EXPORT = "EXPORT"
    IMPORT = "IMPORT"


class AuditResource(str, Enum):
    PATIENT = "Patient"
    USER = "User"
    LAB = "Lab"
    MEDICATION = "Medication"
    TASK = "Task"
    HANDOFF = "Handoff"
    SYSTEM = "System"


class AuditRecord(CamelModel):
    user_id: str
    user_name: str
    action: AuditAction
    resource: AuditResource
    resource_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
