"""CLI tool for admin operations.

Usage:
    python -m airtrack.cli create-admin
    python -m airtrack.cli run-tick
"""

import asyncio
import sys
import getpass

from sqlmodel import Session, select

from airtrack.database import engine, create_db_and_tables
from airtrack.models.user import User
from airtrack.services.auth import hash_password, generate_totp_secret, get_totp_uri


def create_admin():
    """Create an admin user with TOTP setup."""
    create_db_and_tables()

    username = input("Username: ").strip()
    if not username:
        print("Username cannot be empty.")
        sys.exit(1)

    with Session(engine) as session:
        existing = session.exec(select(User).where(User.username == username)).first()
        if existing:
            print(f"User '{username}' already exists.")
            sys.exit(1)

    password = getpass.getpass("Password: ")
    if len(password) < 8:
        print("Password must be at least 8 characters.")
        sys.exit(1)
    if password != getpass.getpass("Confirm password: "):
        print("Passwords do not match.")
        sys.exit(1)

    totp_secret = generate_totp_secret()
    totp_uri = get_totp_uri(totp_secret, username)

    with Session(engine) as session:
        session.add(User(
            username=username,
            hashed_password=hash_password(password),
            totp_secret=totp_secret,
            is_admin=True,
        ))
        session.commit()

    print(f"\nAdmin '{username}' created.")
    print(f"\nTOTP Secret: {totp_secret}")
    print(f"TOTP URI: {totp_uri}")
    print("\nScan the QR code below with your authenticator app:")

    try:
        import qrcode
        qr = qrcode.QRCode(box_size=1, border=1)
        qr.add_data(totp_uri)
        qr.make(fit=True)
        qr.print_ascii(invert=True)
    except ImportError:
        print("(Install qrcode[pil] to display QR code in terminal)")


async def _run_tick_once():
    from airtrack.engine.store import get_position_store
    from airtrack.engine.tick import run_lifecycle_tick
    from airtrack.services.market_data import close_quote_source, get_quote_source

    try:
        return await run_lifecycle_tick(get_position_store(), get_quote_source())
    finally:
        await close_quote_source()


def run_tick():
    """Run a single lifecycle pass against the configured database and exit."""
    from airtrack.utils.logging import setup_logging

    setup_logging()
    create_db_and_tables()
    result = asyncio.run(_run_tick_once())
    print(f"Tick complete: {result.summary()}")
    for closed in result.closed:
        print(
            f"  closed #{closed['trade_id']} {closed['symbol']} ({closed['reason']}) "
            f"{closed['pnl_realized_pct']:+.2f}%"
        )
    if result.failed:
        sys.exit(2)


COMMANDS = {
    "create-admin": create_admin,
    "run-tick": run_tick,
}


def main():
    if len(sys.argv) < 2:
        print("Usage: python -m airtrack.cli <command>")
        print(f"Commands: {', '.join(COMMANDS)}")
        sys.exit(1)

    command = COMMANDS.get(sys.argv[1])
    if command is None:
        print(f"Unknown command: {sys.argv[1]}")
        sys.exit(1)
    command()


if __name__ == "__main__":
    main()
