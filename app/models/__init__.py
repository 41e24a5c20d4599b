# Co-ownership booking engine: database models
# Import all models here for SQLAlchemy discovery

from app.models.vehicle import Vehicle                          # noqa
from app.models.group_member import GroupMember, GroupRole      # noqa
from app.models.booking import Booking, BookingStatus, BookingPriority  # noqa
from app.models.recurring_booking import RecurringBooking, RecurrencePattern, RecurringBookingStatus  # noqa
from app.models.maintenance_block import MaintenanceBlock, MaintenanceStatus  # noqa
