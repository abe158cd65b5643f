from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from frontoffice.config import settings
from frontoffice.database import get_db
from frontoffice.mongo_client import get_mongo_db
from frontoffice.services.mongo_services import record_activity
from frontoffice.models import User
from frontoffice.schemas import LoginRequest, Token, UserResponse
from frontoffice.auth import (
    AuthenticationError,
    authenticate_user,
    create_access_token,
    get_current_active_user
)

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/login", response_model=Token)
async def login(
    credentials: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    mongo_db = Depends(get_mongo_db)
):
    user = await authenticate_user(db, credentials.username, credentials.password)
    if not user:
        raise AuthenticationError("Incorrect username or password")
    if not user.is_active:
        raise AuthenticationError("User account is deactivated")

    await record_activity(
        mongo_db, user,
        action="LOGIN",
        description=f"{user.full_name} signed in",
        target_type="user",
        target_id=user.id,
        ip_address=request.client.host if request.client else None
    )

    return Token(
        access_token=create_access_token(user),
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=UserResponse.model_validate(user)
    )


@router.get("/me", response_model=UserResponse)
async def read_current_user(current_user: User = Depends(get_current_active_user)):
    return current_user
