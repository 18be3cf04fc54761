from app.users.api import router
from app.users.models import User
from app.users.schemas import UserCreate, UserRead
from app.users.service import UserService, user_service

__all__ = [
    "router",
    "User",
    "UserCreate",
    "UserRead",
    "UserService",
    "user_service",
]
