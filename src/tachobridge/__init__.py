"""tachobridge - Async client for chained Hub/Fleet authentication and company card sync."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("tachobridge")
except PackageNotFoundError:
    __version__ = "0+local"
from tachobridge.cards import CardRegistry, CardSynchronizer, InMemoryCardRegistry, apply_plan, reconcile
from tachobridge.client import BridgeClient
from tachobridge.config import BridgeConfig, DeviceProfile
from tachobridge.credentials import CredentialSet, CredentialStore, normalize_bridge_identifier
from tachobridge.device_auth import AuthState, DeviceAuthorizationFlow
from tachobridge.exceptions import (
    AuthorizationExpiredError,
    AuthorizationStartError,
    BridgeClientResolutionError,
    BridgeConfigError,
    BridgeTransportError,
    FleetRequestError,
    HubRequestError,
    MalformedResponseError,
    NotAuthenticatedError,
    OutdatedClientError,
    RoleNotAllowedError,
    TachoBridgeError,
    VerificationError,
)
from tachobridge.models import (
    DeviceAuthorization,
    FleetToken,
    HubUser,
    LocalCard,
    LoginAccepted,
    LoginOutcome,
    LoginRejected,
    ReconcilePlan,
    RemoteCard,
)
from tachobridge.registrar import BridgeClientRegistrar
from tachobridge.storage import JsonFileStorage, KeyValueStorage, MemoryStorage
from tachobridge.token_chain import TokenChainManager

__all__ = [
    "__version__",
    "AuthState",
    "AuthorizationExpiredError",
    "AuthorizationStartError",
    "BridgeClient",
    "BridgeClientRegistrar",
    "BridgeClientResolutionError",
    "BridgeConfig",
    "BridgeConfigError",
    "BridgeTransportError",
    "CardRegistry",
    "CardSynchronizer",
    "CredentialSet",
    "CredentialStore",
    "DeviceAuthorization",
    "DeviceAuthorizationFlow",
    "DeviceProfile",
    "FleetRequestError",
    "FleetToken",
    "HubRequestError",
    "HubUser",
    "InMemoryCardRegistry",
    "JsonFileStorage",
    "KeyValueStorage",
    "LocalCard",
    "LoginAccepted",
    "LoginOutcome",
    "LoginRejected",
    "MalformedResponseError",
    "MemoryStorage",
    "NotAuthenticatedError",
    "OutdatedClientError",
    "ReconcilePlan",
    "RemoteCard",
    "RoleNotAllowedError",
    "TachoBridgeError",
    "TokenChainManager",
    "VerificationError",
    "apply_plan",
    "normalize_bridge_identifier",
    "reconcile",
]
