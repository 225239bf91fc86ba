"""Internal constants shared across the library."""

import re

HUB_BASE_URL = "https://api.transportklok.nl"
FLEET_BASE_URL = "https://api.trackmijn.nl"
USER_AGENT = "tachobridge"

#: Seconds between two device authorization checks.
POLL_INTERVAL_S: float = 5.0
#: Polling stops this many seconds after it started.
MAX_POLL_DURATION_S: float = 5 * 60.0

#: HTTP status the Hub uses to reject an unsupported application version.
OUTDATED_CLIENT_STATUS = 426

#: Role that is never allowed to operate a tachograph bridge.
EMPLOYEE_ROLE = "employee"

# ------------------------------------------------------------------
# Bridge client identifier  ("TBA" + 13 digits)
# ------------------------------------------------------------------

BRIDGE_IDENTIFIER_PREFIX = "TBA"
BRIDGE_IDENTIFIER_DIGITS = 13
BRIDGE_IDENTIFIER_PATTERN = re.compile(rf"{BRIDGE_IDENTIFIER_PREFIX}[0-9]{{{BRIDGE_IDENTIFIER_DIGITS}}}")

CARD_NUMBER_PATTERN = re.compile(r"[A-Za-z0-9]{16}")

# ------------------------------------------------------------------
# Persisted key names
# ------------------------------------------------------------------

STORAGE_KEY_PREFIX = "tachobridge_"
