"""Tests for the per-wallet JSON-lines trade ledger."""

import json
from datetime import datetime, timedelta

from strategyhub.models.trade import TradeLedgerEntry
from strategyhub.services.trade_ledger import TradeLedger, wallet_file_key


WALLET = "eth|0xAAAA000000000000000000000000000000000001"


def make_entry(wallet=WALLET, minute=0, success=True, profit=0.1, tx="tx"):
    return TradeLedgerEntry(
        timestamp=datetime(2026, 1, 15, 12, 0) + timedelta(minutes=minute),
        wallet_address=wallet,
        beneficiary=wallet,
        executed_by="client|signer",
        session_id="session_1",
        strategy="test-strategy",
        action="buy",
        token_in="GUSDC",
        token_out="GALA",
        amount_in=1.0,
        expected_out=49.85,
        actual_out=49.8 if success else 0.0,
        success=success,
        profit=profit if success else 0.0,
        volume=1.0 if success else 0.0,
        pool="GUSDC/GALA",
        transaction_id=f"{tx}-{minute}" if success else None,
        error=None if success else "Slippage exceeded",
    )


class TestTradeLedger:

    def test_directory_created_lazily(self, tmp_path):
        ledger = TradeLedger(tmp_path / "nested" / "ledger")
        assert not ledger.log_dir.exists()

        assert ledger.append(make_entry())
        assert ledger.log_dir.is_dir()

    def test_filenames_are_url_quoted(self, ledger):
        ledger.append(make_entry())
        assert ledger.trades_file(WALLET).name == f"trades-{wallet_file_key(WALLET)}.log"
        assert "|" not in ledger.trades_file(WALLET).name
        assert ledger.trades_file(WALLET).exists()

    def test_one_json_line_per_trade(self, ledger):
        ledger.append(make_entry(minute=0))
        ledger.append(make_entry(minute=1))

        lines = ledger.trades_file(WALLET).read_text().splitlines()
        assert len(lines) == 2
        record = json.loads(lines[0])
        assert record["walletAddress"] == WALLET
        assert record["beneficiary"] == WALLET
        assert record["executedBy"] == "client|signer"
        assert record["transactionId"] == "tx-0"

    def test_read_newest_first_with_limit(self, ledger):
        for minute in range(5):
            ledger.append(make_entry(minute=minute))

        entries = ledger.read(WALLET, limit=3)
        assert [e.transaction_id for e in entries] == ["tx-4", "tx-3", "tx-2"]
        assert ledger.count(WALLET) == 5

    def test_replay_oldest_first(self, ledger):
        for minute in range(3):
            ledger.append(make_entry(minute=minute))
        assert [e.timestamp.minute for e in ledger.replay(WALLET)] == [0, 1, 2]

    def test_order_follows_completion_not_start(self, ledger):
        # the trade started at minute 0 finished after the one started at minute 1
        ledger.append(make_entry(minute=1, tx="fast"))
        ledger.append(make_entry(minute=0, tx="slow"))

        assert [e.transaction_id for e in ledger.replay(WALLET)] == ["fast-1", "slow-0"]
        assert ledger.read(WALLET, limit=1)[0].transaction_id == "slow-0"

    def test_unknown_wallet_is_empty(self, ledger):
        assert ledger.read("nobody") == []
        assert ledger.count("nobody") == 0
        assert ledger.read_errors("nobody") == []

    def test_wallets_are_isolated(self, ledger):
        other = "eth|0xBBBB"
        ledger.append(make_entry())
        ledger.append(make_entry(wallet=other))
        ledger.append(make_entry(wallet=other, minute=1))

        assert ledger.count(WALLET) == 1
        assert ledger.count(other) == 2
        assert all(e.wallet_address == other for e in ledger.read(other))

    def test_malformed_lines_are_skipped(self, ledger):
        ledger.append(make_entry(minute=0))
        with open(ledger.trades_file(WALLET), "a") as f:
            f.write("not json\n")
            f.write("\n")
            f.write(json.dumps({"timestamp": "2026-01-15T12:00:00"}) + "\n")
        ledger.append(make_entry(minute=1))

        assert ledger.count(WALLET) == 2

    def test_wallets_lists_original_addresses(self, ledger):
        ledger.append(make_entry())
        ledger.append(make_entry(wallet="client|abc def"))
        assert ledger.wallets() == sorted([WALLET, "client|abc def"])

    def test_wallets_without_directory(self, tmp_path):
        assert TradeLedger(tmp_path / "missing").wallets() == []

    def test_error_log(self, ledger):
        ledger.log_error(WALLET, "Market data unavailable", "session_1", "test-strategy")
        ledger.log_error(WALLET, "Swap failed", "session_1", "test-strategy")

        errors = ledger.read_errors(WALLET)
        assert [e["error"] for e in errors] == ["Swap failed", "Market data unavailable"]
        assert errors[0]["sessionId"] == "session_1"
        assert ledger.count(WALLET) == 0

    def test_append_failure_returns_false(self, tmp_path):
        blocker = tmp_path / "ledger"
        blocker.write_text("not a directory")
        ledger = TradeLedger(blocker)

        assert ledger.append(make_entry()) is False
