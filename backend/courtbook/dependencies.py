# backend/courtbook/dependencies.py
"""
FastAPI dependencies.

Clients are built once by the app factory and kept on `app.state`;
services are assembled per request from them.
"""

from datetime import datetime
from typing import Callable

from fastapi import Depends, Request
from redis import Redis
from sqlalchemy.orm import Session

from .database import get_db
from .services.expiry_sweeper import ExpirySweeper
from .services.reservations import ReservationManager
from .services.slots import AvailabilityService, BookingConfig, SlotsRedisStore


def get_redis(request: Request) -> Redis:
    return request.app.state.redis


def get_config(request: Request) -> BookingConfig:
    return request.app.state.booking_config


def get_clock(request: Request) -> Callable[[], datetime]:
    return request.app.state.clock


def get_slot_store(
    redis: Redis = Depends(get_redis),
    config: BookingConfig = Depends(get_config),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> SlotsRedisStore:
    return SlotsRedisStore(redis, config, clock)


def get_availability_service(
    db: Session = Depends(get_db),
    store: SlotsRedisStore = Depends(get_slot_store),
) -> AvailabilityService:
    return AvailabilityService(db, store, store.config, store.clock)


def get_reservation_manager(
    db: Session = Depends(get_db),
    store: SlotsRedisStore = Depends(get_slot_store),
) -> ReservationManager:
    return ReservationManager(db, store, store.config, store.clock)


def get_expiry_sweeper(
    db: Session = Depends(get_db),
    store: SlotsRedisStore = Depends(get_slot_store),
) -> ExpirySweeper:
    return ExpirySweeper(db, store, store.config, store.clock)
