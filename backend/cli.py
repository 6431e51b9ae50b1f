import typer
from fastapi import HTTPException

from backend.app.core.auth import User, UserStore
from backend.app.core.database import Database
from backend.app.services.credits import CreditService

app = typer.Typer(help="Inspect and adjust household staff credit balances.")


def _open() -> tuple[UserStore, CreditService]:
    db = Database()
    return UserStore(db=db), CreditService(db)


def _require_user(user_store: UserStore, email: str) -> User:
    user = user_store.get_user_by_email(email)
    if user is None:
        typer.echo(f"No user with email {email}", err=True)
        raise typer.Exit(code=1)
    return user


@app.command("init-db")
def init_db() -> None:
    """Create all tables directly (local SQLite setups; use Alembic for PostgreSQL)."""
    Database().create_all()
    typer.echo("Database tables created")


@app.command("balance")
def balance(email: str = typer.Argument(..., help="Account email.")) -> None:
    """Show the live balance of an account."""
    user_store, credit_service = _open()
    user = _require_user(user_store, email)
    result = credit_service.check_balance(user.id)
    suffix = " (low)" if result.low_credits else ""
    typer.echo(f"{user.email}: {result.credits} credits{suffix}")


@app.command("grant")
def grant(
    email: str = typer.Argument(..., help="Account email."),
    amount: int = typer.Argument(..., help="Signed credit delta; negative claws credits back."),
    reason: str = typer.Option("Manual adjustment", "--reason", "-r", help="Reason recorded on the adjustment."),
) -> None:
    """Apply a manual credit adjustment."""
    user_store, credit_service = _open()
    user = _require_user(user_store, email)
    try:
        new_balance = credit_service.add_credits(user.id, amount, reason)
    except HTTPException as exc:
        typer.echo(f"Adjustment rejected: {exc.detail}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Adjusted {user.email} by {amount:+d}; balance is now {new_balance}")


@app.command("history")
def history(
    email: str = typer.Argument(..., help="Account email."),
    limit: int = typer.Option(10, "--limit", "-n", min=1, max=100, help="Rows per log."),
) -> None:
    """Print recent purchases, spends and adjustments."""
    user_store, credit_service = _open()
    user = _require_user(user_store, email)
    entries = credit_service.get_history(user.id, limit=limit)

    typer.echo("Purchases:")
    for purchase in entries.purchases:
        typer.echo(f"  +{purchase.credits_purchased}  {purchase.stripe_payment_intent_id}  {purchase.created_at}")
    typer.echo("Spends:")
    for spend in entries.spends:
        typer.echo(f"  -{spend.credits_spent}  {spend.feature_used}  {spend.created_at}")
    typer.echo("Adjustments:")
    for adjustment in entries.adjustments:
        typer.echo(f"  {adjustment.amount:+d}  {adjustment.reason}  {adjustment.created_at}")


def main() -> None:
    """Entry point for `python -m backend.cli`."""
    app()  # pragma: no cover


if __name__ == "__main__":
    main()  # pragma: no cover
