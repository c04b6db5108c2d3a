"""Interactive Telethon authorization for ``albumrelay login`` and ``export``.

The pull relay reads channel history as a user account, so the first run has
to log in. QR login is the default; phone login with a one-time code is the
fallback. ``LOGIN_METHOD``, ``PHONE`` and ``2FA`` in the environment skip
the matching prompts for unattended setups.
"""

import asyncio
import logging
import os
from getpass import getpass

import qrcode
from telethon import TelegramClient, errors

LOGGER = logging.getLogger(__name__)

QR_TIMEOUT_SECONDS = 120
QR_ATTEMPTS = 3
CODE_ATTEMPTS = 3

_METHODS = {"1": "qr", "2": "phone"}


def _render_qr(url: str) -> None:
    code = qrcode.QRCode(border=1)
    code.add_data(url)
    code.make(fit=True)
    code.print_ascii(invert=True)


def _two_factor_password() -> str:
    return os.getenv("2FA") or getpass("2FA password: ")


async def _login_qr(client: TelegramClient) -> None:
    login = await client.qr_login()
    for attempt in range(1, QR_ATTEMPTS + 1):
        print("Scan with Telegram > Settings > Devices > Link Desktop Device")
        _render_qr(login.url)
        try:
            await login.wait(timeout=QR_TIMEOUT_SECONDS)
            return
        except asyncio.TimeoutError:
            if attempt == QR_ATTEMPTS:
                raise
            LOGGER.info("QR code expired, issuing a new one (%s/%s)", attempt + 1, QR_ATTEMPTS)
            await login.recreate()


async def _login_phone(client: TelegramClient) -> None:
    phone = os.getenv("PHONE") or input("Phone number (international format): ").strip()
    await client.send_code_request(phone)
    for attempt in range(1, CODE_ATTEMPTS + 1):
        code = input("Login code: ").strip()
        try:
            await client.sign_in(phone=phone, code=code)
            return
        except errors.PhoneCodeInvalidError:
            if attempt == CODE_ATTEMPTS:
                raise
            print("That code was not accepted, try again.")


def _choose_method() -> str:
    configured = (os.getenv("LOGIN_METHOD") or "").strip().lower()
    if configured in _METHODS.values():
        return configured

    print("")
    print("Login methods:")
    print("[1] QR code")
    print("[2] Phone code")
    print("[3] Exit")
    while True:
        choice = input("albumrelay > ").strip()
        if choice == "3":
            raise SystemExit(0)
        if choice in _METHODS:
            return _METHODS[choice]
        print("Invalid option. Please choose 1, 2, or 3.")


async def authorize(client: TelegramClient) -> None:
    """Make sure the session is logged in, prompting the operator if needed."""

    if await client.is_user_authorized():
        return

    login = _login_phone if _choose_method() == "phone" else _login_qr
    try:
        await login(client)
    except errors.SessionPasswordNeededError:
        # Both flows end here when the account has cloud password protection.
        await client.sign_in(password=_two_factor_password())

    me = await client.get_me()
    LOGGER.info("Logged in as: %s", getattr(me, "first_name", None) or getattr(me, "id", "?"))
