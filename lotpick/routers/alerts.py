from typing import Optional

from fastapi import APIRouter, Depends, Query

from .. import schemas
from ..alerts import AlertsService, ExpiryAlert
from ..auth import get_current_user
from ..deps import get_alerts_service
from ..domain import Urgency
from ..rbac import require_role

router = APIRouter()


def _build_alert_entry(alert: ExpiryAlert) -> schemas.ExpiryAlertEntry:
    lot = alert.lot
    return schemas.ExpiryAlertEntry(
        lot_id=lot.id,
        lot_number=lot.lot_number,
        item_id=lot.item_id,
        item_code=alert.item.code if alert.item else None,
        item_name=alert.item.name if alert.item else None,
        location_id=lot.location_id,
        location_code=alert.location.code if alert.location else None,
        location_name=alert.location.name if alert.location else None,
        bin_location=lot.bin_location,
        expiry_date=lot.expiry_date,
        quantity=float(lot.quantity),
        days_until_expiry=alert.days_until_expiry,
        is_expired=alert.is_expired,
        urgency=alert.urgency.value,
    )


@router.get("/expiring", response_model=list[schemas.ExpiryAlertEntry])
async def expiring(
    days: Optional[int] = Query(None, ge=0, le=3650),
    service: AlertsService = Depends(get_alerts_service),
    user=Depends(get_current_user),
) -> list[schemas.ExpiryAlertEntry]:
    require_role(user, "operator")
    alerts = await service.expiring_across_locations(days)
    return [_build_alert_entry(alert) for alert in alerts]


@router.get("/summary", response_model=schemas.ExpirySummaryResponse)
async def summary(
    days: Optional[int] = Query(None, ge=0, le=3650),
    service: AlertsService = Depends(get_alerts_service),
    user=Depends(get_current_user),
) -> schemas.ExpirySummaryResponse:
    require_role(user, "operator")
    result = await service.summary(days)
    return schemas.ExpirySummaryResponse(
        lookahead_days=result.lookahead_days,
        total=result.total,
        expired=result.counts[Urgency.expired],
        critical=result.counts[Urgency.critical],
        warning=result.counts[Urgency.warning],
        info=result.counts[Urgency.info],
        quantity_at_risk=float(result.quantity_at_risk),
        expired_quantity=float(result.expired_quantity),
    )
