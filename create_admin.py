# create_admin.py (Root Directory)
import typer
from sqlmodel import SQLModel, Session, select

from app.database import engine
from app.models import User, UserRole
from app.utils.logging import setup_logging
from app.utils.security import get_password_hash

cli = typer.Typer()

@cli.command()
def main(
    email: str = typer.Option(..., "--email", "-e", prompt="Admin email", help="Login email of the account."),
    name: str = typer.Option("admin", "--name", "-n", help="Display name."),
    password: str = typer.Option(
        ..., "--password", "-p",
        prompt="Admin password",
        hide_input=True,
        confirmation_prompt=True,
        help="At least 6 characters."
    ),
    reset: bool = typer.Option(False, "--reset", help="Reset the password and role if the account exists.")
):
    """Creates an administrator account, or promotes and resets an existing one with --reset."""
    logger = setup_logging()
    if len(password) < 6:
        typer.echo("Password must be at least 6 characters.", err=True)
        raise typer.Exit(code=1)

    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        user = session.exec(select(User).where(User.email == email)).first()
        if user and not reset:
            typer.echo(f"{email} already exists; pass --reset to overwrite its password.", err=True)
            raise typer.Exit(code=1)

        if user:
            user.hashed_password = get_password_hash(password)
            user.role = UserRole.ADMIN
        else:
            user = User(email=email, name=name, hashed_password=get_password_hash(password), role=UserRole.ADMIN)
        session.add(user)
        session.commit()

    logger.info(f"Admin account ready: {email}")
    typer.echo(f"Admin account ready: {email}")

if __name__ == "__main__":
    cli()
