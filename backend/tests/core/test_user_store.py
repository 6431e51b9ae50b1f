from __future__ import annotations

import secrets

import pytest
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError

from backend.app.core.auth import SessionStore
from backend.app.db.models import DbCreditAdjustment, DbCreditPurchase, DbCreditSpend, DbUser
from backend.app.services.credits import CreditOperation


def _email() -> str:
    return f"oauth_{secrets.token_hex(6)}@example.com"


def test_register_local_user_sets_starting_credits(db, user_store) -> None:
    raw_email = f"  Owner_{secrets.token_hex(3)}@Example.COM "
    user = user_store.register_local_user(raw_email, "testpassword123", "Owner")

    assert user.credits == 500
    with db.session() as session:
        row = session.get(DbUser, user.id)
        assert row.credits == 500
        assert row.provider == "local"
        assert row.email == raw_email.strip().lower()


def test_register_rejects_invalid_input(user_store) -> None:
    with pytest.raises(ValueError, match="Invalid email"):
        user_store.register_local_user("not-an-email", "testpassword123", "x")
    with pytest.raises(ValueError, match="at least 12"):
        user_store.register_local_user(_email(), "short1", "x")


def test_oauth_first_login_grants_once(db, user_store, credit_service) -> None:
    email = _email()

    user, created = user_store.upsert_oauth_user(email, "Butler", "sub-1")
    assert created is True
    assert user.credits == 500
    assert user.provider == "oauth"

    credit_service.add_credits(user.id, -20, "test spend")
    again, created_again = user_store.upsert_oauth_user(email, "Head Butler", "sub-1")

    assert created_again is False
    assert again.id == user.id
    assert again.name == "Head Butler"
    assert credit_service.check_balance(user.id).credits == 480

    with db.session() as session:
        count = session.scalar(select(func.count()).select_from(DbUser).where(DbUser.email == email))
    assert count == 1


def test_authenticate_local(user_store, make_user) -> None:
    user = make_user()

    assert user_store.authenticate_local(user.email, "testpassword123").id == user.id
    assert user_store.authenticate_local(user.email, "wrongpassword123") is None
    assert user_store.authenticate_local("missing@example.com", "testpassword123") is None


def test_oauth_accounts_cannot_password_login(user_store) -> None:
    email = _email()
    user_store.upsert_oauth_user(email, "Maid", "sub-2")

    assert user_store.authenticate_local(email, "testpassword123") is None


def test_session_issue_authenticate_revoke(db, make_user) -> None:
    store = SessionStore(db=db)
    user = make_user()

    token = store.issue_session(user, user_agent="pytest")
    assert store.authenticate(token).id == user.id
    assert store.authenticate("") is None

    store.revoke(token)
    assert store.authenticate(token) is None


def test_users_with_ledger_rows_cannot_be_deleted(db, credit_service, make_user) -> None:
    user = make_user()
    credit_service.deduct_credits(CreditOperation(user_id=user.id, amount=5, feature_used="chat"))
    credit_service.add_credits(user.id, 5, "grant")
    credit_service.record_purchase(
        user.id, payment_intent_id=f"pi_{secrets.token_hex(4)}", credits=1000, amount_paid=100, currency="usd"
    )

    with pytest.raises(IntegrityError):
        with db.session() as session:
            session.execute(delete(DbUser).where(DbUser.id == user.id))

    with db.session() as session:
        assert session.get(DbUser, user.id) is not None
        for model in (DbCreditSpend, DbCreditAdjustment, DbCreditPurchase):
            remaining = session.scalar(select(func.count()).select_from(model).where(model.user_id == user.id))
            assert remaining == 1
