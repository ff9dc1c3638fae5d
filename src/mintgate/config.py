"""Runtime configuration — defaults plus MINTGATE_* environment overrides.

A .env file is loaded first (python-dotenv); variables already set in
the process environment take precedence over the file.

    MINTGATE_OPERATOR_ADDRESS     privileged minting operator identity
    MINTGATE_REQUEST_EXPIRY_HOURS default 24
    MINTGATE_MAX_ATTACHMENTS      default 20
    MINTGATE_MAX_SUBJECT_LENGTH   default 200
    MINTGATE_RETRY_ATTEMPTS       default 5
    MINTGATE_RETRY_MAX_DELAY      seconds, default 30
    MINTGATE_ATTACHMENT_WORKERS   default 4
    MINTGATE_PINATA_API_KEY / MINTGATE_PINATA_SECRET_KEY / MINTGATE_PINATA_BASE_URL
    MINTGATE_RPC_URL / MINTGATE_CHAIN_ID / MINTGATE_PRIVATE_KEY
    MINTGATE_EVENT_LOG            JSONL path for the audit log
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from mintgate.errors import ValidationError
from mintgate.identity.address import normalize_identity
from mintgate.models.credit import CreditCosts
from mintgate.storage.pinata import PINATA_API_URL

ENV_PREFIX = "MINTGATE_"


@dataclass(frozen=True)
class MintgateConfig:
    operator_address: str = ""
    request_expiry_hours: int = 24
    max_attachments: int = 20
    max_subject_length: int = 200
    retry_attempts: int = 5
    retry_max_delay_seconds: float = 30.0
    attachment_workers: int = 4
    credit_costs: CreditCosts = CreditCosts()
    pinata_api_key: str = ""
    pinata_secret_key: str = ""
    pinata_base_url: str = PINATA_API_URL
    rpc_url: str = ""
    chain_id: int = 11155111
    private_key: str = ""
    event_log_path: Optional[Path] = None

    @property
    def request_expiry(self) -> timedelta:
        return timedelta(hours=self.request_expiry_hours)

    @property
    def has_pinata_credentials(self) -> bool:
        return bool(self.pinata_api_key and self.pinata_secret_key)

    @property
    def has_chain_credentials(self) -> bool:
        return bool(self.rpc_url and self.private_key)

    def validate(self) -> list[str]:
        """Return configuration errors (empty = OK)."""
        errors = []
        if not self.operator_address:
            errors.append("Operator address is not configured")
        else:
            try:
                normalize_identity(self.operator_address)
            except ValidationError as e:
                errors.append(e.message)
        for name in ("request_expiry_hours", "retry_attempts", "attachment_workers"):
            if getattr(self, name) < 1:
                errors.append(f"{name} must be at least 1")
        if self.max_attachments < 0:
            errors.append("max_attachments must be non-negative")
        if bool(self.pinata_api_key) != bool(self.pinata_secret_key):
            errors.append("Pinata API key and secret must be set together")
        return errors

    @classmethod
    def from_env(
        cls,
        env_file: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> MintgateConfig:
        """Build a config from a .env file and the environment.

        Raises ValidationError on a value that does not parse.
        """
        if environ is None:
            load_dotenv(env_file)
            environ = os.environ

        def get(name: str, default: str = "") -> str:
            return environ.get(ENV_PREFIX + name, default).strip()

        event_log = get("EVENT_LOG")
        return cls(
            operator_address=get("OPERATOR_ADDRESS"),
            request_expiry_hours=_int(get, "REQUEST_EXPIRY_HOURS", 24),
            max_attachments=_int(get, "MAX_ATTACHMENTS", 20),
            max_subject_length=_int(get, "MAX_SUBJECT_LENGTH", 200),
            retry_attempts=_int(get, "RETRY_ATTEMPTS", 5),
            retry_max_delay_seconds=_float(get, "RETRY_MAX_DELAY", 30.0),
            attachment_workers=_int(get, "ATTACHMENT_WORKERS", 4),
            pinata_api_key=get("PINATA_API_KEY"),
            pinata_secret_key=get("PINATA_SECRET_KEY"),
            pinata_base_url=get("PINATA_BASE_URL", PINATA_API_URL),
            rpc_url=get("RPC_URL"),
            chain_id=_int(get, "CHAIN_ID", 11155111),
            private_key=get("PRIVATE_KEY"),
            event_log_path=Path(event_log) if event_log else None,
        )


def _int(get, name: str, default: int) -> int:
    raw = get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValidationError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from e


def _float(get, name: str, default: float) -> float:
    raw = get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValidationError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from e
