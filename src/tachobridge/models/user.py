"""Hub user model and login outcome variants."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import field_validator, model_validator

from tachobridge._constants import EMPLOYEE_ROLE
from tachobridge.models._base import BridgeBaseModel


class HubUser(BridgeBaseModel):
    """Snapshot of the signed-in Hub account (``/rest/me``).

    Held in memory only; never persisted.
    """

    id: str | None = None
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    current_role: str | None = None
    organization_name: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value

    @model_validator(mode="before")
    @classmethod
    def _flatten_relations(cls, values: Any) -> Any:
        """Lift ``currentOrganization.name`` and a nested ``current_role``."""
        if not isinstance(values, dict):
            return values
        working = dict(values)
        organization = working.get("currentOrganization") or working.get("current_organization")
        if isinstance(organization, dict) and "organization_name" not in working:
            working["organization_name"] = organization.get("name")
        role = working.get("current_role")
        if isinstance(role, dict):
            working["current_role"] = role.get("name") or role.get("slug")
        return working

    @property
    def display_name(self) -> str:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or self.email or ""

    @property
    def is_employee(self) -> bool:
        return self.current_role == EMPLOYEE_ROLE


@dataclass(frozen=True, slots=True)
class LoginAccepted:
    """The Hub session belongs to an account allowed to use the bridge."""

    user: HubUser


@dataclass(frozen=True, slots=True)
class LoginRejected:
    """The account was rejected by the role gate.

    ``reason`` is a short user-facing message.  Credentials have been
    cleared by the time this value is returned.
    """

    user: HubUser
    reason: str


LoginOutcome = LoginAccepted | LoginRejected
"""Result of validating a Hub session against the role gate."""