# /backend/wardround/utils/audit.py

import functools
import logging
from typing import Any, Optional

from fastapi import Request
from pydantic import BaseModel

from wardround.models.audit import AuditAction, AuditRecord, AuditResource
from wardround.services.audit_service import audit_service

logger = logging.getLogger(__name__)

SENSITIVE_FIELDS = frozenset({"password", "pin", "nightPin", "night_pin", "token", "access_token"})
REDACTED = "[REDACTED]"


def redact(data: Any) -> Any:
    """Copy of ``data`` with secret-bearing fields replaced, at any depth."""
    if isinstance(data, dict):
        return {
            key: (REDACTED if key in SENSITIVE_FIELDS and value else redact(value))
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [redact(item) for item in data]
    return data


def _request_body(kwargs: dict) -> dict:
    body = {}
    for value in kwargs.values():
        if isinstance(value, BaseModel):
            body.update(value.model_dump(by_alias=True, mode="json", exclude_unset=True))
    return redact(body)


def _resource_id(request: Optional[Request], result: Any) -> Optional[str]:
    if request is not None and request.path_params:
        params = request.path_params
        return str(params.get("patient_id") or params.get("user_id") or next(iter(params.values())))
    if isinstance(result, BaseModel):
        result = result.model_dump(by_alias=True)
    if isinstance(result, dict):
        found = result.get("_id") or result.get("id")
        if found is None and isinstance(result.get("user"), dict):
            found = result["user"].get("id")
        return str(found) if found is not None else None
    return None


def audited(action: AuditAction, resource: AuditResource):
    """
    Record an audit entry after the wrapped route returns.

    Only successful calls are recorded: an HTTPException skips the entry.
    The route must take ``request: Request``; the user comes from its
    ``current_user`` argument, or from the returned token on login.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            result = await func(*args, **kwargs)

            request = kwargs.get("request")
            user = kwargs.get("current_user")
            user_id = user_name = None
            if user:
                user_id, user_name = str(user.get("_id")), user.get("name", "")
            else:
                token_user = getattr(result, "user", None)
                if token_user is not None:
                    user_id, user_name = token_user.id, token_user.name

            if user_id is None:
                return result

            entry = AuditRecord(
                user_id=user_id,
                user_name=user_name or "",
                action=action,
                resource=resource,
                resource_id=_resource_id(request, result),
                details={
                    "method": request.method if request else None,
                    "path": request.url.path if request else None,
                    "body": _request_body(kwargs),
                },
                ip_address=request.client.host if request and request.client else None,
                user_agent=request.headers.get("user-agent") if request else None,
            )
            audit_service.record_in_background(entry)
            return result

        return wrapper

    return decorator
