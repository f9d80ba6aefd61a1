"""
SQLAlchemy models for daily prayer snapshots: one row per calendar day.
"""
from sqlalchemy import Column, Date, DateTime, Integer, JSON

from prayer_reminder.core.db import Base


class PrayerDayRecord(Base):
    """One day's prayer set. data is JSON: [{name, time: "HH:MM", status}, ...] in day order."""
    __tablename__ = "prayer_days"

    id = Column(Integer, primary_key=True, autoincrement=True)
    day = Column(Date, nullable=False, unique=True, index=True)
    saved_at = Column(DateTime(timezone=False), nullable=False)
    data = Column(JSON, nullable=False)
