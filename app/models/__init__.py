from app.models.credit_transaction import CreditTransaction
from app.models.profile import Profile
from app.models.user_credit import UserCredit
from app.models.user_role import UserRole

__all__ = [
    "CreditTransaction",
    "Profile",
    "UserCredit",
    "UserRole",
]
