from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel, Field

from ...core.auth import SessionStore, User, UserStore
from ..deps import get_current_user, get_session_store, get_user_store

router = APIRouter()


class UserCreate(BaseModel):
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=12, max_length=128)
    name: str = Field(..., max_length=100)


class Token(BaseModel):
    access_token: str
    token_type: str
    user_id: str
    name: str


class UserResponse(BaseModel):
    id: str
    email: str
    name: str
    provider: str
    credits: int


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def register(
    user_in: UserCreate,
    user_store: UserStore = Depends(get_user_store),
) -> Any:
    """Register a new user. The account starts with the initial credit grant."""
    try:
        return user_store.register_local_user(
            email=user_in.email,
            password=user_in.password,
            name=user_in.name,
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )


@router.post("/token", response_model=Token)
def login_access_token(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    user_store: UserStore = Depends(get_user_store),
    session_store: SessionStore = Depends(get_session_store),
) -> Any:
    """OAuth2 compatible token login, get an access token for future requests."""
    user = user_store.authenticate_local(form_data.username, form_data.password)
    if not user:
        raise HTTPException(status_code=400, detail="Incorrect email or password")

    token = session_store.issue_session(user, user_agent=request.headers.get("user-agent"))
    return {
        "access_token": token,
        "token_type": "bearer",
        "user_id": user.id,
        "name": user.name,
    }


@router.get("/me", response_model=UserResponse)
def read_users_me(
    current_user: User = Depends(get_current_user),
) -> Any:
    """Get current user profile, balance included."""
    return current_user
