"""
Telegram session login

Interactive one-off login for the live message source. Signs in with the phone
number from the environment and prints the session string to store as
TELEGRAM_SESSION.

Usage:
    python src/telegram_login.py
"""

import os
import sys
from getpass import getpass

from dotenv import load_dotenv
from telethon.sessions import StringSession
from telethon.sync import TelegramClient


class LoginError(Exception):
    pass


def login(api_id: int, api_hash: str, phone: str, client_factory=None, prompt=input, secret=getpass) -> str:
    client_factory = client_factory or (
        lambda: TelegramClient(StringSession(), api_id, api_hash, connection_retries=5)
    )
    client = client_factory()
    try:
        client.start(
            phone=phone,
            password=lambda: secret("Enter 2FA password (if any): "),
            code_callback=lambda: prompt("Enter the code you received: "),
        )
        return client.session.save()
    finally:
        client.disconnect()


def _env_settings() -> tuple[int, str, str]:
    missing = [key for key in ['API_ID', 'API_HASH', 'PHONE_NUMBER'] if not os.getenv(key)]
    if missing:
        raise LoginError(f"Missing credential(s): {', '.join(missing)} (environment or .env)")
    try:
        api_id = int(os.getenv('API_ID'))
    except ValueError:
        raise LoginError(f"API_ID must be an integer, got '{os.getenv('API_ID')}'")
    return api_id, os.getenv('API_HASH'), os.getenv('PHONE_NUMBER')


def cli():
    load_dotenv()
    try:
        api_id, api_hash, phone = _env_settings()
    except LoginError as e:
        print(f"\nLOGIN ERROR: {e}", file=sys.stderr)
        sys.exit(1)

    print("Logging in to Telegram...")
    session = login(api_id, api_hash, phone)
    print("\nLogged in successfully!")
    print("\nSession string (save this to .env as TELEGRAM_SESSION):\n")
    print(session)


if __name__ == '__main__':
    cli()
