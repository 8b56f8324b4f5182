# Models package (re-export feature modules for stable imports)
from .users.user import User
from .auth.otp import OTPCode
from .market.listing import Listing

__all__ = [
    "User",
    "OTPCode",
    "Listing",
]
