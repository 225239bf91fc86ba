"""Company card models for the local registry and the Fleet directory."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tachobridge._constants import CARD_NUMBER_PATTERN
from tachobridge.models._base import BridgeBaseModel


def _stringify(value: Any) -> Any:
    if isinstance(value, int):
        return str(value)
    return value


class LocalCard(BaseModel):
    """A company card known to this device.

    ``card_number`` is the stable key.  ``iccid`` links the record to the
    physical smartcard last seen by a reader and ``remote_id`` to the Fleet
    directory entry, when one exists.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    card_number: str
    display_name: str = Field(default="", alias="name")
    iccid: str | None = None
    remote_id: str | None = None

    @field_validator("card_number")
    @classmethod
    def _validate_card_number(cls, value: str) -> str:
        number = value.strip().upper()
        if not CARD_NUMBER_PATTERN.fullmatch(number):
            raise ValueError("card_number must be 16 alphanumeric characters")
        return number

    @field_validator("iccid", "remote_id", mode="before")
    @classmethod
    def _optional_identifier(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return _stringify(value)


class RemoteCard(BridgeBaseModel):
    """The Fleet directory's view of a company card.

    Authoritative for existence and identity metadata, not for what a
    reader has observed.
    """

    card_number: str
    display_name: str = Field(default="", alias="name")
    iccid: str | None = None
    remote_id: str | None = Field(default=None, alias="id")

    @field_validator("card_number")
    @classmethod
    def _normalize_card_number(cls, value: str) -> str:
        return value.strip().upper()

    @field_validator("remote_id", mode="before")
    @classmethod
    def _stringify_remote_id(cls, value: Any) -> Any:
        return _stringify(value)

    def to_payload(self) -> dict[str, Any]:
        """Request body for the Fleet card endpoints."""
        payload: dict[str, Any] = {
            "card_number": self.card_number,
            "name": self.display_name,
        }
        if self.iccid:
            payload["iccid"] = self.iccid
        return payload


@dataclass(frozen=True)
class ReconcilePlan:
    """Changes the local registry needs to match the Fleet directory.

    Attributes
    ----------
    missing_local_cards : dict[str, LocalCard]
        Remote-only cards to import locally, keyed by card number.
    updated_local_cards : dict[str, LocalCard]
        Cards known on both sides whose local record must take the remote
        identity metadata, keyed by card number.
    """

    missing_local_cards: dict[str, LocalCard] = field(default_factory=dict)
    updated_local_cards: dict[str, LocalCard] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.missing_local_cards and not self.updated_local_cards
