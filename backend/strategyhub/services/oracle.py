"""Oracle countdown: a global transmission schedule plus optional personal
schedules per wallet, published as ``oracle_update`` and
``wallet_oracle_update`` events.
"""

import asyncio
import logging
import random
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from ..models.oracle import (
    OracleFrequency,
    OraclePreferences,
    OracleState,
    OracleStatus,
    WalletOracleState,
)
from .events import EventBus, OracleUpdate, WalletOracleUpdate, event_bus

logger = logging.getLogger(__name__)

IMMINENT_WINDOW = timedelta(minutes=5)

FREQUENCY_SECONDS = {
    OracleFrequency.EVERY_2H: 2 * 60 * 60,
    OracleFrequency.EVERY_4H: 4 * 60 * 60,
}

IDLE_FLAVOR = [
    "Crystal resonance building...",
    "Scanning the blockchain ethereal plane...",
    "Ancient algorithms calculating...",
    "Divining patterns in the digital ether...",
    "The crystal pulses with ethereal energy...",
]


def flavor_text(seconds_remaining: float, rng: random.Random) -> str:
    minutes = seconds_remaining / 60
    if seconds_remaining <= 0:
        return "THE ORACLE SPEAKS!"
    if minutes <= 1:
        return "INCOMING TRANSMISSION... STAND BY..."
    if minutes <= 5:
        return "*Static fills the crystal sphere*"
    if minutes <= 30:
        return "The Oracle stirs from meditation..."
    if minutes <= 60:
        return "The crystal grows warm... visions approaching..."
    return rng.choice(IDLE_FLAVOR)


def _charge(interval: float, remaining: float) -> float:
    if interval <= 0:
        return 100.0
    return max(0.0, min(100.0, (interval - remaining) / interval * 100))


class OracleService:
    """Keeps the oracle countdown states and refreshes them periodically."""

    def __init__(
        self,
        bus: EventBus,
        update_interval: float = 30,
        transmission_interval: float = 7200,
        clock: Callable[[], datetime] = datetime.utcnow,
        seed: Optional[int] = None,
    ):
        self.bus = bus
        self.update_interval = update_interval
        self.transmission_interval = transmission_interval
        self._clock = clock
        self._rng = random.Random(seed)
        self._wallets: Dict[str, WalletOracleState] = {}
        self._task: Optional[asyncio.Task] = None
        self.state = self._initial_state()

    def _initial_state(self) -> OracleState:
        return OracleState(
            next_transmission_time=self._clock() + timedelta(seconds=self.transmission_interval),
            signal_strength=self._rng.randint(70, 100),
        )

    def configure(self, config) -> None:
        self.update_interval = config.get("oracle.update_interval_seconds")
        self.transmission_interval = config.get("oracle.transmission_interval_seconds")
        self.state = self._initial_state()

    # Global oracle

    def get_state(self) -> dict:
        return self.state.to_dict(self._clock())

    def update(self) -> OracleState:
        """Advance the global and personal countdowns and publish them."""
        now = self._clock()
        state = self.state
        remaining = (state.next_transmission_time - now).total_seconds()
        state.crystal_charge = _charge(self.transmission_interval, remaining)

        if remaining <= 0:
            self._transmit(now)
        else:
            state.current_status = (
                OracleStatus.IMMINENT
                if remaining <= IMMINENT_WINDOW.total_seconds()
                else OracleStatus.CHARGING
            )
            state.flavor_text = flavor_text(remaining, self._rng)

        self.bus.publish(OracleUpdate(oracle=state.to_dict(now)))

        for wallet in self._wallets.values():
            self._update_wallet(wallet, now)

        return state

    def _transmit(self, now: datetime) -> None:
        state = self.state
        state.is_transmitting = True
        state.current_status = OracleStatus.TRANSMITTING
        logger.info("Oracle transmission beginning...")

        state.transmission_count += 1
        state.last_transmission_time = now
        state.next_transmission_time = now + timedelta(seconds=self.transmission_interval)
        state.crystal_charge = 0.0
        state.current_status = OracleStatus.COOLDOWN
        state.flavor_text = "The Oracle returns to meditation... crystal recharging..."
        state.is_transmitting = False

        for wallet in self._wallets.values():
            if wallet.is_subscribed_to_global:
                wallet.personal_transmission_count += 1
                wallet.last_personal_transmission = now
                wallet.next_personal_transmission = state.next_transmission_time

        logger.info(f"Oracle transmission {state.transmission_count} complete")

    # Wallet oracles

    def _interval_for(self, preferences: OraclePreferences) -> float:
        if preferences.frequency == OracleFrequency.SYNC_GLOBAL:
            return self.transmission_interval
        if preferences.frequency == OracleFrequency.CUSTOM:
            return preferences.custom_interval_seconds or self.transmission_interval
        return FREQUENCY_SECONDS[preferences.frequency]

    def get_wallet_state(self, wallet_address: str) -> WalletOracleState:
        """Wallet oracle, created on first access and synced to the global one."""
        wallet = self._wallets.get(wallet_address)
        if wallet is None:
            wallet = WalletOracleState(
                wallet_address=wallet_address,
                next_personal_transmission=self.state.next_transmission_time,
            )
            self._wallets[wallet_address] = wallet
            logger.info(f"Oracle chamber created for wallet {wallet_address[:12]}...")
        return wallet

    def get_wallet_status(self, wallet_address: str) -> dict:
        now = self._clock()
        wallet = self.get_wallet_state(wallet_address)
        remaining = (wallet.next_personal_transmission - now).total_seconds()
        wallet.personal_crystal_charge = _charge(self._interval_for(wallet.preferences), remaining)
        return wallet.to_dict(now)

    def all_wallets(self) -> List[dict]:
        now = self._clock()
        return [wallet.to_dict(now) for wallet in self._wallets.values()]

    def update_wallet_preferences(
        self,
        wallet_address: str,
        frequency: Optional[str] = None,
        custom_interval_seconds: Optional[float] = None,
    ) -> WalletOracleState:
        """Change a wallet's transmission schedule.

        Raises:
            ValueError: Unknown frequency or a non-positive custom interval
        """
        if custom_interval_seconds is not None and custom_interval_seconds <= 0:
            raise ValueError("customInterval must be positive")

        wallet = self.get_wallet_state(wallet_address)
        preferences = wallet.preferences
        if frequency is not None:
            preferences.frequency = OracleFrequency(frequency)
        if custom_interval_seconds is not None:
            preferences.custom_interval_seconds = custom_interval_seconds

        now = self._clock()
        if preferences.frequency == OracleFrequency.SYNC_GLOBAL:
            wallet.is_subscribed_to_global = True
            wallet.next_personal_transmission = self.state.next_transmission_time
        else:
            wallet.is_subscribed_to_global = False
            wallet.next_personal_transmission = now + timedelta(
                seconds=self._interval_for(preferences)
            )

        self.bus.publish(WalletOracleUpdate(
            wallet_address=wallet_address, oracle=wallet.to_dict(now)
        ))
        logger.info(
            f"Oracle preferences updated for wallet {wallet_address[:12]}...: "
            f"{preferences.frequency.value}"
        )
        return wallet

    def _update_wallet(self, wallet: WalletOracleState, now: datetime) -> None:
        interval = self._interval_for(wallet.preferences)
        remaining = (wallet.next_personal_transmission - now).total_seconds()
        if not wallet.is_subscribed_to_global and remaining <= 0:
            wallet.personal_transmission_count += 1
            wallet.last_personal_transmission = now
            wallet.next_personal_transmission = now + timedelta(seconds=interval)
            remaining = interval
        wallet.personal_crystal_charge = _charge(interval, remaining)
        self.bus.publish(WalletOracleUpdate(
            wallet_address=wallet.wallet_address, oracle=wallet.to_dict(now)
        ))

    # Background loop

    async def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._run())
        logger.info(f"Oracle started, updating every {self.update_interval}s")

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        logger.info("Oracle stopped")

    async def _run(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.update_interval)
                self.update()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Oracle update error: {e}")


# Global oracle service instance
oracle_service = OracleService(event_bus)


def get_oracle_service() -> OracleService:
    """FastAPI dependency returning the process-wide oracle."""
    return oracle_service
