"""Data models for Hub and Fleet API responses."""

from tachobridge.models._base import BridgeBaseModel
from tachobridge.models.card import LocalCard, ReconcilePlan, RemoteCard
from tachobridge.models.token import AuthorizationCheck, BearerToken, DeviceAuthorization, FleetToken
from tachobridge.models.user import HubUser, LoginAccepted, LoginOutcome, LoginRejected

__all__ = [
    "AuthorizationCheck",
    "BearerToken",
    "BridgeBaseModel",
    "DeviceAuthorization",
    "FleetToken",
    "HubUser",
    "LocalCard",
    "LoginAccepted",
    "LoginOutcome",
    "LoginRejected",
    "ReconcilePlan",
    "RemoteCard",
]
