# app/models/vehicle.py
"""
Shared vehicles table.
Every vehicle belongs to exactly one co-ownership group; bookings,
maintenance blocks and recurring series all hang off a vehicle.
"""

from sqlalchemy import Column, String, DateTime, Text
from app.database import Base


class Vehicle(Base):
    __tablename__ = "vehicles"

    id = Column(String(36), primary_key=True)
    group_id = Column(String(36), nullable=False, index=True)
    plate_number = Column(String(50), unique=True, nullable=False, index=True)
    model = Column(String(200))
    registered_at = Column(DateTime)
    notes = Column(Text)

    def __repr__(self):
        return f"<Vehicle {self.plate_number} group={self.group_id}>"
