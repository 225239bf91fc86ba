"""Credential set persistence.

The :class:`CredentialStore` is the single writer of the credential set.
It performs no freshness checks: it only merges, persists and clears.
"""

from __future__ import annotations

import logging
import re
import secrets
from typing import Any

from pydantic import BaseModel, ConfigDict

from tachobridge._constants import (
    BRIDGE_IDENTIFIER_DIGITS,
    BRIDGE_IDENTIFIER_PATTERN,
    BRIDGE_IDENTIFIER_PREFIX,
    STORAGE_KEY_PREFIX,
)
from tachobridge.storage import KeyValueStorage

_logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"[^0-9]")


def generate_bridge_identifier() -> str:
    """Return a fresh random ``TBA`` + 13 digit identifier."""
    digits = "".join(str(secrets.randbelow(10)) for _ in range(BRIDGE_IDENTIFIER_DIGITS))
    return f"{BRIDGE_IDENTIFIER_PREFIX}{digits}"


def normalize_bridge_identifier(identifier: str | None) -> str:
    """Coerce a stored identifier into the ``TBA`` + 13 digit form.

    Well-formed values are returned unchanged.  Anything else keeps at most
    its 13 trailing digits, left-padded with zeros; a value without digits
    is replaced by a freshly generated identifier.
    """
    if identifier and BRIDGE_IDENTIFIER_PATTERN.fullmatch(identifier):
        return identifier

    digits = _NON_DIGITS.sub("", identifier or "")[-BRIDGE_IDENTIFIER_DIGITS:]
    if not digits:
        return generate_bridge_identifier()
    return f"{BRIDGE_IDENTIFIER_PREFIX}{digits.zfill(BRIDGE_IDENTIFIER_DIGITS)}"


class CredentialSet(BaseModel):
    """Tokens and identifiers that survive process restarts.

    Parameters
    ----------
    device_token : str or None
        Long-lived Hub credential for this device.
    session_token : str or None
        Hub session derived from the device token.
    fleet_token : str or None
        Fleet access token minted by the Hub.
    fleet_company_id : str or None
        Company scope of ``fleet_token``.
    bridge_client_identifier : str or None
        Stable ``TBA`` identifier of this physical device.  Always filled on
        sets returned by the store.
    bridge_device_id : str or None
        Server-assigned id of the verified Fleet bridge client.
    pending_authorization_token : str or None
        Device authorization awaiting user confirmation.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    device_token: str | None = None
    session_token: str | None = None
    fleet_token: str | None = None
    fleet_company_id: str | None = None
    bridge_client_identifier: str | None = None
    bridge_device_id: str | None = None
    pending_authorization_token: str | None = None

    def populated(self) -> dict[str, str]:
        """Fields holding a non-empty value."""
        return {name: value for name, value in self.model_dump().items() if value}

    @property
    def has_fleet_token(self) -> bool:
        return bool(self.fleet_token and self.fleet_company_id)


CREDENTIAL_FIELDS: tuple[str, ...] = tuple(CredentialSet.model_fields)

#: Fields a logout never removes: they identify the device, not the user.
_DEVICE_FIELDS: frozenset[str] = frozenset({"bridge_client_identifier"})


def storage_key(field_name: str) -> str:
    return f"{STORAGE_KEY_PREFIX}{field_name}"


class CredentialStore:
    """Owns the persisted credential set.

    ``save`` merges: only non-empty fields are written and nothing else is
    cleared.  ``clear`` wipes everything except the bridge client identifier.
    """

    def __init__(self, storage: KeyValueStorage) -> None:
        self._storage = storage
        self._current = self.load()

    @property
    def current(self) -> CredentialSet:
        """In-memory view of the last persisted set."""
        return self._current

    @property
    def bridge_client_identifier(self) -> str:
        identifier = self._current.bridge_client_identifier
        assert identifier is not None  # noqa: S101
        return identifier

    def _ensure_identifier(self, values: dict[str, Any]) -> None:
        stored = values.get("bridge_client_identifier")
        identifier = normalize_bridge_identifier(stored)
        if identifier != stored:
            if stored:
                _logger.warning("Normalized foreign bridge client identifier to %s", identifier)
            else:
                _logger.info("Generated bridge client identifier %s", identifier)
            self._storage.set(storage_key("bridge_client_identifier"), identifier)
        values["bridge_client_identifier"] = identifier

    def load(self) -> CredentialSet:
        """Read the persisted set; absent fields are ``None``."""
        values: dict[str, Any] = {}
        for name in CREDENTIAL_FIELDS:
            value = self._storage.get(storage_key(name))
            values[name] = value or None
        self._ensure_identifier(values)
        self._current = CredentialSet(**values)
        return self._current

    def save(self, credentials: CredentialSet | None = None, **fields: str | None) -> CredentialSet:
        """Persist every non-empty field of *credentials* and/or *fields*.

        Fields that are ``None`` or empty are ignored, never cleared.
        """
        updates: dict[str, str] = credentials.populated() if credentials is not None else {}
        for name, value in fields.items():
            if name not in CREDENTIAL_FIELDS:
                raise TypeError(f"Unknown credential field: {name}")
            if value:
                updates[name] = value

        if "bridge_client_identifier" in updates:
            updates["bridge_client_identifier"] = normalize_bridge_identifier(updates["bridge_client_identifier"])

        for name, value in updates.items():
            self._storage.set(storage_key(name), value)

        if updates:
            _logger.debug("Persisted credential fields: %s", sorted(updates))
            self._current = self._current.model_copy(update=updates)
        return self._current

    def forget(self, *field_names: str) -> CredentialSet:
        """Remove individual fields.  The bridge client identifier is kept."""
        removed: dict[str, None] = {}
        for name in field_names:
            if name not in CREDENTIAL_FIELDS:
                raise TypeError(f"Unknown credential field: {name}")
            if name in _DEVICE_FIELDS:
                continue
            self._storage.delete(storage_key(name))
            removed[name] = None
        if removed:
            self._current = self._current.model_copy(update=removed)
        return self._current

    def clear(self) -> CredentialSet:
        """Remove every credential except the bridge client identifier."""
        _logger.info("Clearing stored credentials")
        return self.forget(*(name for name in CREDENTIAL_FIELDS if name not in _DEVICE_FIELDS))
