"""Database models."""

from alert_relay.models.trade import Trade
from alert_relay.models.notification import NotificationRecord, NotificationKey
from alert_relay.models.recipient import RecipientPreference, ChannelLink, LinkCode
from alert_relay.models.setup_stat import SetupStat
from alert_relay.models.signal_snapshot import SignalSnapshot
from alert_relay.models.user import User

__all__ = [
    "Trade",
    "NotificationRecord",
    "NotificationKey",
    "RecipientPreference",
    "ChannelLink",
    "LinkCode",
    "SetupStat",
    "SignalSnapshot",
    "User",
]
