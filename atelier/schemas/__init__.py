from .admin import AdminPermissions, BanRequest, ManageAdminRequest, PriceKind, PriceUpdate
from .auth import ProfileUpdate, RefreshRequest, UserCreate, UserLogin, UserResponse
from .gallery import GalleryItemCreate, GalleryItemUpdate
from .order import OrderCreate, OrderStatusUpdate
from .payment import CreatePaymentOrderRequest, VerifyPaymentRequest
from .ticket import Attachment, MessageCreate, TicketCreate, TicketUpdate

__all__ = [
    "AdminPermissions",
    "Attachment",
    "BanRequest",
    "CreatePaymentOrderRequest",
    "GalleryItemCreate",
    "GalleryItemUpdate",
    "ManageAdminRequest",
    "MessageCreate",
    "OrderCreate",
    "OrderStatusUpdate",
    "PriceKind",
    "PriceUpdate",
    "ProfileUpdate",
    "RefreshRequest",
    "TicketCreate",
    "TicketUpdate",
    "UserCreate",
    "UserLogin",
    "UserResponse",
]
