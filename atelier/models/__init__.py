from .audit import ActivityLog
from .gallery import GalleryItem
from .order import Order
from .pricing import AddonPrice, ServicePrice, SizePrice
from .rate_limit import RateLimitCounter
from .ticket import Ticket, TicketMessage
from .tokens import RefreshToken
from .user import PERMISSIONS, User

__all__ = [
    "ActivityLog",
    "AddonPrice",
    "GalleryItem",
    "Order",
    "PERMISSIONS",
    "RateLimitCounter",
    "RefreshToken",
    "ServicePrice",
    "SizePrice",
    "Ticket",
    "TicketMessage",
    "User",
]
