from fastapi import APIRouter, status

from app.dependencies import CurrentUser, UserServiceDep
from app.models import UserCreate, UserRead

router = APIRouter(prefix="/api/users", tags=["users"])


@router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
async def create_user(user_data: UserCreate, users: UserServiceDep):
    """Register a user"""
    return await users.create_user(user_data)


@router.get("/me", response_model=UserRead)
async def get_me(user: CurrentUser):
    return UserRead.model_validate(user)
