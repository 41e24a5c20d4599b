# app/models/maintenance_block.py
"""
Maintenance calendar blocks.
Created from the vehicle service's maintenance schedule; an active block
makes its window unbookable.
"""

import enum
from sqlalchemy import Column, String, DateTime, Text, Enum
from app.database import Base


class MaintenanceStatus(str, enum.Enum):
    SCHEDULED = "Scheduled"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    OVERDUE = "Overdue"


INACTIVE_MAINTENANCE_STATUSES = frozenset({MaintenanceStatus.COMPLETED, MaintenanceStatus.CANCELLED})


class MaintenanceBlock(Base):
    __tablename__ = "maintenance_blocks"

    id = Column(String(36), primary_key=True)
    vehicle_id = Column(String(36), nullable=False, index=True)
    service_type = Column(String(100), nullable=False)
    start_at = Column(DateTime, nullable=False)
    end_at = Column(DateTime, nullable=False)
    status = Column(Enum(MaintenanceStatus, name="maintenance_status"), nullable=False)
    notes = Column(Text)

    def __repr__(self):
        return f"<MaintenanceBlock {self.id} vehicle={self.vehicle_id} {self.service_type} status={self.status.value}>"
