"""Shared constants for the trade lifecycle and notification layers."""

LONG = "LONG"
SHORT = "SHORT"
DIRECTIONS = (LONG, SHORT)

# Timeframe token suffix -> minutes multiplier
TIMEFRAME_SUFFIX_MINUTES: dict[str, int] = {
    "W": 7 * 24 * 60,
    "D": 24 * 60,
}

# Literal that upstream templating emits when a variable was not filled in
UNDEFINED_PLACEHOLDER = "undefined"

PNL_DECIMALS = 2

# Close reasons
CLOSE_SL = "sl"
CLOSE_SL_AFTER_PARTIAL = "sl-after-partial"
CLOSE_TP1_TP2 = "tp1+tp2"
CLOSE_AUTO_OPPOSITE = "auto-opposite"

# Tiers, lowest first
TIERS = ("base", "good", "great", "elite")
DEFAULT_TIER = "base"
DEFAULT_SETUP_TYPE = "default"

# Notification alert types
ALERT_ENTRY = "ENTRY"
ALERT_TP1 = "TP1"
ALERT_TP2 = "TP2"
ALERT_SL = "SL"

MAX_RECENT_TRADES = 250
