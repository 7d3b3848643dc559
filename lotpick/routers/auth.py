from fastapi import APIRouter, Depends

from .. import auth as auth_utils
from .. import schemas
from ..deps import get_store
from ..domain import User

router = APIRouter()


@router.post("/login", response_model=schemas.Token)
async def login(payload: schemas.LoginRequest, store=Depends(get_store)) -> schemas.Token:
    user = await auth_utils.authenticate(store, payload.username, payload.password)
    return schemas.Token(access_token=auth_utils.create_access_token(user))


@router.post("/refresh", response_model=schemas.Token)
async def refresh(user: User = Depends(auth_utils.get_current_user)) -> schemas.Token:
    return schemas.Token(access_token=auth_utils.create_access_token(user))


@router.get("/me", response_model=schemas.UserProfile)
async def me(user: User = Depends(auth_utils.get_current_user)) -> schemas.UserProfile:
    return schemas.UserProfile(
        id=user.id,
        username=user.username,
        role=user.role,
        active=user.active,
        created_at=user.created_at,
    )
