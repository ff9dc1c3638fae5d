"""Shared fixtures: deterministic test wallets and an email builder."""

from email.message import EmailMessage
from typing import Callable, Optional, Sequence

import pytest
from eth_account import Account

# Well-known development keys (public test mnemonic). Never funded.
OWNER_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
OTHER_KEY = "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d"
OPERATOR_KEY = "0x5de4111afa1a4b94908f83103eb1f1706367c2e68ca870fc3fb9a804cdab365a"


def build_email(
    subject: Optional[str] = "Quarterly report",
    body: str = "Please find the figures attached.",
    attachments: Sequence[tuple[str, bytes]] = (),
    message_id: Optional[str] = "<msg-001@example.com>",
    sender: str = "Alice <alice@example.com>",
    extra_headers: Sequence[tuple[str, str]] = (),
) -> bytes:
    msg = EmailMessage()
    msg["From"] = sender
    msg["To"] = "bob@example.com"
    if subject is not None:
        msg["Subject"] = subject
    msg["Date"] = "Mon, 16 Feb 2026 12:00:00 +0000"
    if message_id:
        msg["Message-ID"] = message_id
    for name, value in extra_headers:
        msg[name] = value
    msg.set_content(body)
    for filename, content in attachments:
        msg.add_attachment(
            content, maintype="application", subtype="octet-stream", filename=filename,
        )
    return msg.as_bytes()


@pytest.fixture
def make_email() -> Callable[..., bytes]:
    return build_email


@pytest.fixture
def owner_account():
    return Account.from_key(OWNER_KEY)


@pytest.fixture
def other_account():
    return Account.from_key(OTHER_KEY)


@pytest.fixture
def operator_account():
    return Account.from_key(OPERATOR_KEY)
