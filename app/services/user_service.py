from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.errors import Conflict, NotFound
from app.database import store_errors
from app.models import User, UserCreate, UserRead


class UserService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_user(self, user_data: UserCreate) -> UserRead:
        with store_errors("find user"):
            result = await self.db.exec(select(User).where(User.email == user_data.email))
            existing = result.first()
        if existing is not None:
            raise Conflict(f"User with email {user_data.email} already exists")

        user = User.model_validate(user_data)
        self.db.add(user)
        with store_errors("create user"):
            try:
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise
        return UserRead.model_validate(user)

    async def get_user(self, user_id: str) -> UserRead:
        with store_errors("get user"):
            user = await self.db.get(User, user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found")
        return UserRead.model_validate(user)
