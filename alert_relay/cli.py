"""CLI tool for admin operations.

Usage:
    python -m alert_relay.cli create-user [--totp]
    python -m alert_relay.cli set-stats SYMBOL TIMEFRAME SETUP WIN_RATE PROFIT_FACTOR [SAMPLES]
"""

import sys
import getpass
from datetime import datetime, timezone

import qrcode
from sqlmodel import Session, select

from alert_relay.database import engine, create_db_and_tables
from alert_relay.engine.errors import InvalidTradeKey
from alert_relay.engine.trade_key import timeframe_minutes
from alert_relay.models.setup_stat import SetupStat
from alert_relay.models.user import User
from alert_relay.services.auth import hash_password, generate_totp_secret, get_totp_uri
from alert_relay.services.tiering import tier_from_stats
from alert_relay.utils.logging import setup_logging


def create_user(with_totp: bool = False):
    """Create a recipient account, optionally with TOTP setup."""
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
    password_confirm = getpass.getpass("Confirm password: ")
    if password != password_confirm:
        print("Passwords do not match.")
        sys.exit(1)

    totp_secret = generate_totp_secret() if with_totp else None
    user = User(
        username=username,
        hashed_password=hash_password(password),
        totp_secret=totp_secret,
    )

    with Session(engine) as session:
        session.add(user)
        session.commit()

    print(f"\nUser '{username}' created successfully.")
    if totp_secret:
        print(f"\nTOTP Secret: {totp_secret}")
        totp_uri = get_totp_uri(totp_secret, username)
        print(f"TOTP URI: {totp_uri}")
        print("\nScan the QR code below with your authenticator app:")
        qr = qrcode.QRCode(box_size=1, border=1)
        qr.add_data(totp_uri)
        qr.make(fit=True)
        qr.print_ascii(invert=True)


def set_stats(args: list[str]):
    """Insert or update verified statistics for a setup."""
    if len(args) < 5:
        print("Usage: set-stats SYMBOL TIMEFRAME SETUP WIN_RATE PROFIT_FACTOR [SAMPLES]")
        sys.exit(1)

    symbol, tf_token, setup_type = args[0], args[1], args[2]
    try:
        timeframe = timeframe_minutes(tf_token)
        win_rate = float(args[3])
        profit_factor = float(args[4])
        samples = int(args[5]) if len(args) > 5 else 0
    except (InvalidTradeKey, ValueError) as e:
        print(f"Invalid argument: {e}")
        sys.exit(1)

    if win_rate > 1:
        # Accept percentages, e.g. 68 -> 0.68
        win_rate = win_rate / 100

    create_db_and_tables()
    with Session(engine) as session:
        stat = session.exec(
            select(SetupStat).where(
                SetupStat.symbol == symbol,
                SetupStat.timeframe == timeframe,
                SetupStat.setup_type == setup_type,
            )
        ).first()
        if stat is None:
            stat = SetupStat(
                symbol=symbol, timeframe=timeframe, setup_type=setup_type,
                win_rate=win_rate, profit_factor=profit_factor,
            )
        stat.win_rate = win_rate
        stat.profit_factor = profit_factor
        stat.sample_size = samples
        stat.verified = True
        stat.updated_at = datetime.now(timezone.utc)
        session.add(stat)
        session.commit()

    tier = tier_from_stats(win_rate, profit_factor)
    print(f"{symbol} {timeframe}m {setup_type}: win_rate={win_rate:.2f} pf={profit_factor:.2f} -> {tier}")


def main():
    setup_logging()
    if len(sys.argv) < 2:
        print("Usage: python -m alert_relay.cli <command>")
        print("Commands: create-user, set-stats")
        sys.exit(1)

    command = sys.argv[1]
    if command == "create-user":
        create_user(with_totp="--totp" in sys.argv[2:])
    elif command == "set-stats":
        set_stats(sys.argv[2:])
    else:
        print(f"Unknown command: {command}")
        sys.exit(1)


if __name__ == "__main__":
    main()
