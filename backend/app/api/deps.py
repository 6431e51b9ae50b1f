from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer

from ..core.auth import SessionStore, User, UserStore
from ..core.database import Database
from ..core.errors import Unauthorized
from ..services.credits import CreditService
from ..services.payments import PaymentWebhookProcessor
from ..services.usage import UsageRecorder

# Simple OAuth2 scheme (Password flow) for Swagger UI
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/token")


def get_db(request: Request) -> Database:
    """The process-wide database created in the application lifespan."""
    db = getattr(request.app.state, "db", None)
    if db is None:
        db = Database()
        request.app.state.db = db
    return db


def get_user_store(db: Database = Depends(get_db)) -> UserStore:
    return UserStore(db=db)


def get_session_store(db: Database = Depends(get_db)) -> SessionStore:
    return SessionStore(db=db)


def get_credit_service(db: Database = Depends(get_db)) -> CreditService:
    return CreditService(db)


def get_usage_recorder(credit_service: CreditService = Depends(get_credit_service)) -> UsageRecorder:
    return UsageRecorder(credit_service)


def get_webhook_processor(
    credit_service: CreditService = Depends(get_credit_service),
    user_store: UserStore = Depends(get_user_store),
) -> PaymentWebhookProcessor:
    return PaymentWebhookProcessor(credit_service, user_store)


async def get_current_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    session_store: SessionStore = Depends(get_session_store),
) -> User:
    """Validate session token and return current user."""
    user = session_store.authenticate(token)
    if not user:
        raise Unauthorized()
    return user
