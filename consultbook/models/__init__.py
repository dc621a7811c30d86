from .user import User
from .availability_slot import AvailabilitySlot
from .booking import Booking, BookingStatus
from .integration_token import IntegrationToken

__all__ = ["User", "AvailabilitySlot", "Booking", "BookingStatus", "IntegrationToken"]
