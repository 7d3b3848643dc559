"""Request-scoped wiring: database session, store and services."""

from __future__ import annotations

from typing import AsyncIterator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from . import settings
from .alerts import AlertsService
from .allocation import AllocationEngine
from .expiry import ExpiryClassifier
from .picking import PickingOrderStateMachine
from .repositories.sql import SQLStore
from .reservations import ReservationService
from .routing import get_route_optimizer

engine = create_async_engine(settings.DATABASE_URL, pool_pre_ping=True)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


async def get_session() -> AsyncIterator[AsyncSession]:
    async with SessionLocal() as session:
        yield session


def get_store(session: AsyncSession = Depends(get_session)) -> SQLStore:
    return SQLStore(session)


def get_classifier() -> ExpiryClassifier:
    return ExpiryClassifier(warning_days=settings.WARNING_DAYS)


def get_allocation_engine(
    store=Depends(get_store), classifier: ExpiryClassifier = Depends(get_classifier)
) -> AllocationEngine:
    return AllocationEngine(store, classifier)


def get_reservation_service(
    store=Depends(get_store), allocation: AllocationEngine = Depends(get_allocation_engine)
) -> ReservationService:
    return ReservationService(allocation, store, orders=store)


def get_state_machine(
    store=Depends(get_store), reservations: ReservationService = Depends(get_reservation_service)
) -> PickingOrderStateMachine:
    return PickingOrderStateMachine(
        store,
        route_optimizer=get_route_optimizer(settings.ROUTE_STRATEGY),
        over_pick_policy=settings.OVER_PICK_POLICY,
        reservations=reservations,
    )


def get_alerts_service(
    store=Depends(get_store), classifier: ExpiryClassifier = Depends(get_classifier)
) -> AlertsService:
    return AlertsService(store, classifier, lookahead_days=settings.ALERT_LOOKAHEAD_DAYS)
