# backend/courtbook/models/tables.py

from sqlalchemy import JSON, Column, ForeignKey, Index, Integer, Text, UniqueConstraint, text
from sqlalchemy.orm import declarative_base, relationship

from ..timezones import utc_now
from .types import UTCDateTime

Base = declarative_base()
metadata = Base.metadata


class Venues(Base):
    __tablename__ = 'venues'

    name = Column(Text, nullable=False)
    timezone = Column(Text, nullable=False, server_default=text("'UTC'"))
    opening_time = Column(Text)  # "HH:MM" venue local
    closing_time = Column(Text)  # "HH:MM" venue local, "24:00" allowed
    status = Column(Text, nullable=False, server_default=text("'active'"))
    id = Column(Integer, primary_key=True)

    courts = relationship('Courts', back_populates='venue')
    bookings = relationship('Bookings', back_populates='venue')


class Courts(Base):
    __tablename__ = 'courts'

    venue_id = Column(ForeignKey('venues.id', ondelete='CASCADE'), nullable=False)
    name = Column(Text, nullable=False)
    status = Column(Text, nullable=False, server_default=text("'active'"))
    id = Column(Integer, primary_key=True)

    venue = relationship('Venues', back_populates='courts')
    price_rules = relationship('PriceRules', back_populates='court')
    booked_slots = relationship('BookedSlots', back_populates='court')


class PriceRules(Base):
    __tablename__ = 'court_prices'
    __table_args__ = (
        Index('ix_court_prices_court_day', 'court_id', 'day_of_week'),
    )

    court_id = Column(ForeignKey('courts.id', ondelete='CASCADE'), nullable=False)
    day_of_week = Column(Integer, nullable=False)  # 0 = Sunday
    start_time = Column(Text, nullable=False)
    end_time = Column(Text, nullable=False)
    price = Column(Integer, nullable=False)  # per hour, minor units
    is_active = Column(Integer, nullable=False, server_default=text('1'))
    id = Column(Integer, primary_key=True)

    court = relationship('Courts', back_populates='price_rules')


class Bookings(Base):
    __tablename__ = 'bookings'

    venue_id = Column(ForeignKey('venues.id'), nullable=False)
    court_id = Column(ForeignKey('courts.id'), nullable=False)
    user_id = Column(Integer)  # nullable for guest bookings
    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)
    status = Column(Text, nullable=False, server_default=text("'pending'"))
    booking_type = Column(Text, nullable=False, server_default=text("'single'"))
    total_amount = Column(Integer, nullable=False, server_default=text('0'))
    id = Column(Integer, primary_key=True)

    recurrence_id = Column(Text)
    recurrence_config = Column(JSON)
    notes = Column(Text)
    payment_reference = Column(Text)
    cancellation_reason = Column(Text)
    refund_amount = Column(Integer)
    expired_reason = Column(Text)
    confirmed_at = Column(UTCDateTime)
    cancelled_at = Column(UTCDateTime)
    expired_at = Column(UTCDateTime)
    annotations = Column(JSON)  # caller-supplied, never read by the engine

    created_at = Column(UTCDateTime, nullable=False, default=utc_now)
    updated_at = Column(UTCDateTime, nullable=False, default=utc_now, onupdate=utc_now)

    venue = relationship('Venues', back_populates='bookings')
    court = relationship('Courts')
    booked_slots = relationship(
        'BookedSlots',
        back_populates='booking',
        order_by='BookedSlots.start_time',
    )
    payments = relationship('Payments', back_populates='booking')


class BookedSlots(Base):
    __tablename__ = 'booked_slots'
    __table_args__ = (
        Index('ix_booked_slots_status_expiry', 'status', 'expiry_at'),
        Index('ix_booked_slots_court_start', 'court_id', 'start_time'),
    )

    booking_id = Column(ForeignKey('bookings.id', ondelete='CASCADE'), nullable=False)
    court_id = Column(ForeignKey('courts.id'), nullable=False)
    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)
    status = Column(Text, nullable=False, server_default=text("'scheduled'"))
    price = Column(Integer, nullable=False, server_default=text('0'))
    expiry_at = Column(UTCDateTime)
    occurrence_index = Column(Integer, nullable=False, server_default=text('0'))
    id = Column(Integer, primary_key=True)

    created_at = Column(UTCDateTime, nullable=False, default=utc_now)
    updated_at = Column(UTCDateTime, nullable=False, default=utc_now, onupdate=utc_now)

    booking = relationship('Bookings', back_populates='booked_slots')
    court = relationship('Courts', back_populates='booked_slots')
    claims = relationship('SlotClaims', back_populates='booked_slot', cascade='all, delete-orphan')


class SlotClaims(Base):
    """One row per (court, bucket) covered by a live booked slot."""

    __tablename__ = 'slot_claims'
    __table_args__ = (
        UniqueConstraint('court_id', 'bucket_start', name='uq_slot_claims_court_bucket'),
    )

    court_id = Column(ForeignKey('courts.id'), nullable=False)
    bucket_start = Column(UTCDateTime, nullable=False)
    booked_slot_id = Column(ForeignKey('booked_slots.id', ondelete='CASCADE'), nullable=False)
    id = Column(Integer, primary_key=True)

    booked_slot = relationship('BookedSlots', back_populates='claims')


class Payments(Base):
    __tablename__ = 'payments'

    booking_id = Column(ForeignKey('bookings.id', ondelete='CASCADE'), nullable=False)
    amount = Column(Integer, nullable=False)  # negative for refunds
    payment_method = Column(Text, nullable=False)
    status = Column(Text, nullable=False, server_default=text("'pending'"))
    reason = Column(Text)
    original_amount = Column(Integer)
    id = Column(Integer, primary_key=True)

    created_at = Column(UTCDateTime, nullable=False, default=utc_now)

    booking = relationship('Bookings', back_populates='payments')
