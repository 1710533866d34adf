"""Audit trail for moderation and challenge workflow transitions"""
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from lorepin.logging import get_correlation_id
from lorepin.models import AuditLog


async def create_audit_log(
    session: AsyncSession,
    action_type: str,
    entity_type: str,
    entity_id: str,
    user_id: Optional[str],
    action_data: Dict[str, Any],
    previous_state: Optional[Dict[str, Any]] = None,
    new_state: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """Create audit log entry in the caller's transaction"""
    audit_log = AuditLog(
        action_type=action_type,
        entity_type=entity_type,
        entity_id=str(entity_id),
        user_id=user_id,
        action_data=action_data,
        previous_state=previous_state,
        new_state=new_state,
        correlation_id=get_correlation_id()
    )
    session.add(audit_log)
    await session.flush()
    return audit_log
