"""Tests for the oracle countdown service."""

import asyncio
import random
import pytest
from datetime import timedelta

from strategyhub.models.oracle import OracleStatus, format_countdown
from strategyhub.services.oracle import IDLE_FLAVOR, flavor_text


WALLET = "eth|0xAAAA000000000000000000000000000000000001"


def published(bus, event_type):
    return [e for e in bus.drain() if e.type == event_type]


class TestFormatting:

    @pytest.mark.parametrize("seconds, expected", [
        (0, "00:00:00"),
        (-30, "00:00:00"),
        (59.9, "00:00:59"),
        (3661, "01:01:01"),
        (7200, "02:00:00"),
    ])
    def test_format_countdown(self, seconds, expected):
        assert format_countdown(seconds) == expected

    def test_flavor_text_by_remaining_time(self):
        rng = random.Random(1)
        assert flavor_text(0, rng) == "THE ORACLE SPEAKS!"
        assert flavor_text(30, rng) == "INCOMING TRANSMISSION... STAND BY..."
        assert flavor_text(4 * 60, rng) == "*Static fills the crystal sphere*"
        assert flavor_text(20 * 60, rng) == "The Oracle stirs from meditation..."
        assert flavor_text(45 * 60, rng) == "The crystal grows warm... visions approaching..."
        assert flavor_text(3 * 3600, rng) in IDLE_FLAVOR


class TestGlobalOracle:

    def test_initial_state(self, oracle):
        state = oracle.get_state()
        assert state["currentStatus"] == "charging"
        assert state["timeRemaining"] == 7200
        assert state["formattedCountdown"] == "02:00:00"
        assert state["transmissionCount"] == 0
        assert 70 <= state["signalStrength"] <= 100

    def test_charge_builds(self, oracle, bus, clock):
        clock.advance(hours=1)
        state = oracle.update()

        assert state.crystal_charge == pytest.approx(50.0)
        assert state.current_status == OracleStatus.CHARGING
        updates = published(bus, "oracle_update")
        assert len(updates) == 1
        assert updates[0].oracle["crystalCharge"] == pytest.approx(50.0)

    def test_imminent(self, oracle, clock):
        clock.advance(seconds=7200 - 240)
        state = oracle.update()
        assert state.current_status == OracleStatus.IMMINENT
        assert state.flavor_text == "*Static fills the crystal sphere*"

    def test_transmission(self, oracle, clock):
        clock.advance(seconds=7201)
        state = oracle.update()

        assert state.transmission_count == 1
        assert state.current_status == OracleStatus.COOLDOWN
        assert state.crystal_charge == 0.0
        assert state.is_transmitting is False
        assert state.last_transmission_time == clock.now
        assert state.next_transmission_time == clock.now + timedelta(seconds=7200)

        clock.advance(seconds=60)
        assert oracle.update().transmission_count == 1


class TestWalletOracles:

    def test_created_on_first_access(self, oracle):
        assert oracle.all_wallets() == []

        status = oracle.get_wallet_status(WALLET)
        assert status["walletAddress"] == WALLET
        assert status["isSubscribedToGlobal"] is True
        assert status["personalPreferences"]["frequency"] == "sync_global"
        assert status["nextPersonalTransmission"] == oracle.get_state()["nextTransmissionTime"]
        assert len(oracle.all_wallets()) == 1

    def test_synced_wallet_follows_global_transmission(self, oracle, bus, clock):
        oracle.get_wallet_status(WALLET)
        clock.advance(seconds=7201)
        oracle.update()

        wallet = oracle.get_wallet_state(WALLET)
        assert wallet.personal_transmission_count == 1
        assert wallet.next_personal_transmission == oracle.state.next_transmission_time

        updates = published(bus, "wallet_oracle_update")
        assert updates[-1].wallet_address == WALLET

    @pytest.mark.parametrize("frequency, seconds", [("every_2h", 7200), ("every_4h", 14400)])
    def test_fixed_frequencies(self, oracle, clock, frequency, seconds):
        wallet = oracle.update_wallet_preferences(WALLET, frequency=frequency)

        assert wallet.is_subscribed_to_global is False
        assert wallet.next_personal_transmission == clock.now + timedelta(seconds=seconds)

    def test_preferences_persist(self, oracle, bus):
        oracle.update_wallet_preferences(WALLET, frequency="every_4h")

        status = oracle.get_wallet_status(WALLET)
        assert status["personalPreferences"]["frequency"] == "every_4h"
        assert status["isSubscribedToGlobal"] is False

        updates = published(bus, "wallet_oracle_update")
        assert len(updates) == 1
        assert updates[0].oracle["personalPreferences"]["frequency"] == "every_4h"

    def test_custom_interval_transmits(self, oracle, clock):
        oracle.update_wallet_preferences(WALLET, frequency="custom", custom_interval_seconds=600)

        clock.advance(seconds=300)
        oracle.update()
        wallet = oracle.get_wallet_state(WALLET)
        assert wallet.personal_transmission_count == 0
        assert wallet.personal_crystal_charge == pytest.approx(50.0)

        clock.advance(seconds=300)
        oracle.update()
        assert wallet.personal_transmission_count == 1
        assert wallet.last_personal_transmission == clock.now
        assert wallet.next_personal_transmission == clock.now + timedelta(seconds=600)

    def test_custom_without_interval_uses_global(self, oracle, clock):
        wallet = oracle.update_wallet_preferences(WALLET, frequency="custom")
        assert wallet.next_personal_transmission == clock.now + timedelta(seconds=7200)

    def test_back_to_sync(self, oracle):
        oracle.update_wallet_preferences(WALLET, frequency="every_2h")
        wallet = oracle.update_wallet_preferences(WALLET, frequency="sync_global")

        assert wallet.is_subscribed_to_global is True
        assert wallet.next_personal_transmission == oracle.state.next_transmission_time

    def test_unknown_frequency(self, oracle):
        with pytest.raises(ValueError):
            oracle.update_wallet_preferences(WALLET, frequency="hourly")

    @pytest.mark.parametrize("interval", [0, -60])
    def test_non_positive_custom_interval(self, oracle, interval):
        with pytest.raises(ValueError):
            oracle.update_wallet_preferences(WALLET, frequency="custom", custom_interval_seconds=interval)
        assert oracle.all_wallets() == []


class TestBackgroundLoop:

    @pytest.mark.asyncio
    async def test_start_and_stop(self, oracle, bus):
        await oracle.start()
        await oracle.start()
        await asyncio.sleep(0.05)
        await oracle.stop()

        count = len(published(bus, "oracle_update"))
        assert count >= 1

        await asyncio.sleep(0.03)
        assert bus.pending() == 0
