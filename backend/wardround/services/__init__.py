# /backend/wardround/services/__init__.py
from .auth_service import auth_service
from .audit_service import audit_service
from .completion_provider import completion_provider
from .extraction_service import extraction_service
from .generation_service import generation_service
from .patient_service import patient_service
