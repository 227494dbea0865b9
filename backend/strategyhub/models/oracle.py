"""Oracle countdown state: one global instance plus lazily created wallet states."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class OracleStatus(str, Enum):
    """Oracle countdown phase."""
    CHARGING = "charging"
    IMMINENT = "imminent"
    TRANSMITTING = "transmitting"
    COOLDOWN = "cooldown"


class OracleFrequency(str, Enum):
    """Wallet transmission schedule preference."""
    SYNC_GLOBAL = "sync_global"
    EVERY_2H = "every_2h"
    EVERY_4H = "every_4h"
    CUSTOM = "custom"


@dataclass
class OracleState:
    """Process-wide oracle state."""
    next_transmission_time: datetime
    is_transmitting: bool = False
    crystal_charge: float = 0.0  # 0-100
    current_status: OracleStatus = OracleStatus.CHARGING
    last_transmission_time: Optional[datetime] = None
    transmission_count: int = 0
    flavor_text: str = "The Oracle awakens from ancient slumber..."
    signal_strength: int = 100  # 0-100

    def to_dict(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        remaining = _seconds_until(self.next_transmission_time, now)
        return {
            "isTransmitting": self.is_transmitting,
            "nextTransmissionTime": self.next_transmission_time.isoformat(),
            "crystalCharge": self.crystal_charge,
            "currentStatus": self.current_status.value,
            "lastTransmissionTime": (
                self.last_transmission_time.isoformat()
                if self.last_transmission_time else None
            ),
            "transmissionCount": self.transmission_count,
            "flavorText": self.flavor_text,
            "signalStrength": self.signal_strength,
            "timeRemaining": remaining,
            "formattedCountdown": format_countdown(remaining),
        }


@dataclass
class OraclePreferences:
    frequency: OracleFrequency = OracleFrequency.SYNC_GLOBAL
    custom_interval_seconds: Optional[float] = None


@dataclass
class WalletOracleState:
    """Per-wallet oracle state, subscribed to the global oracle by default."""
    wallet_address: str
    next_personal_transmission: datetime
    personal_crystal_charge: float = 0.0
    last_personal_transmission: Optional[datetime] = None
    personal_transmission_count: int = 0
    is_subscribed_to_global: bool = True
    preferences: OraclePreferences = field(default_factory=OraclePreferences)

    def to_dict(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        remaining = _seconds_until(self.next_personal_transmission, now)
        return {
            "walletAddress": self.wallet_address,
            "personalCrystalCharge": self.personal_crystal_charge,
            "lastPersonalTransmission": (
                self.last_personal_transmission.isoformat()
                if self.last_personal_transmission else None
            ),
            "nextPersonalTransmission": self.next_personal_transmission.isoformat(),
            "personalTransmissionCount": self.personal_transmission_count,
            "isSubscribedToGlobal": self.is_subscribed_to_global,
            "personalPreferences": {
                "frequency": self.preferences.frequency.value,
                "customInterval": self.preferences.custom_interval_seconds,
            },
            "timeRemaining": remaining,
            "formattedCountdown": format_countdown(remaining),
        }


def _seconds_until(when: datetime, now: Optional[datetime] = None) -> float:
    now = now or datetime.utcnow()
    return (when - now).total_seconds()


def format_countdown(seconds: float) -> str:
    """Format a countdown as HH:MM:SS; past deadlines show 00:00:00."""
    total = max(0, int(seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"
