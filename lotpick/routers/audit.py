from fastapi import APIRouter, Depends, Query

from .. import schemas
from ..auth import get_current_user
from ..deps import get_store
from ..rbac import require_role

router = APIRouter()


@router.get("/", response_model=list[schemas.AuditEntry])
async def list_audit(
    limit: int = Query(100, ge=1, le=500),
    store=Depends(get_store),
    user=Depends(get_current_user),
) -> list[schemas.AuditEntry]:
    require_role(user, "supervisor")
    events = await store.list_events(limit)
    return [
        schemas.AuditEntry(
            entity=event.entity,
            entity_id=event.entity_id,
            action=event.action,
            payload_json=event.payload,
            user_id=event.user_id,
            ts=event.ts,
        )
        for event in events
    ]
