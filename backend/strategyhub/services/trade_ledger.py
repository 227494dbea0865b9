"""Per-wallet trade and error logs.

Each wallet gets two append-only JSON-lines files under the ledger
directory: ``trades-<address>.log`` and ``errors-<address>.log``. The
address is URL-quoted so any address format maps to one safe filename.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional, Union
from urllib.parse import quote, unquote

from ..models.trade import TradeLedgerEntry

logger = logging.getLogger(__name__)

# Base logs directory
LOGS_BASE_DIR = Path(__file__).parent.parent.parent / "logs" / "multi-user"

TRADES_PREFIX = "trades-"
ERRORS_PREFIX = "errors-"
SUFFIX = ".log"


def wallet_file_key(wallet_address: str) -> str:
    """Filename-safe form of a wallet address."""
    return quote(wallet_address, safe="")


class TradeLedger:
    """Append-only trade history with best-effort file persistence."""

    def __init__(self, log_dir: Optional[Union[str, Path]] = None):
        self.log_dir = Path(log_dir) if log_dir else LOGS_BASE_DIR
        self._dir_ready = False

    def _ensure_log_directory(self) -> None:
        """Create the ledger directory if it doesn't exist."""
        if self._dir_ready:
            return
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            self._dir_ready = True
            logger.debug(f"Ledger directory ensured at {self.log_dir}")
        except OSError as e:
            logger.error(f"Failed to create ledger directory {self.log_dir}: {e}")

    def trades_file(self, wallet_address: str) -> Path:
        return self.log_dir / f"{TRADES_PREFIX}{wallet_file_key(wallet_address)}{SUFFIX}"

    def errors_file(self, wallet_address: str) -> Path:
        return self.log_dir / f"{ERRORS_PREFIX}{wallet_file_key(wallet_address)}{SUFFIX}"

    def append(self, entry: TradeLedgerEntry) -> bool:
        """Append one trade to the wallet's log.

        Returns:
            True if the line was written
        """
        log_file = self.trades_file(entry.wallet_address)
        self._ensure_log_directory()
        try:
            with open(log_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry.to_dict()) + "\n")
            logger.debug(f"Logged trade for {entry.wallet_address} to {log_file.name}")
            return True
        except OSError as e:
            logger.error(f"Failed to log trade for {entry.wallet_address}: {e}")
            return False

    def log_error(
        self,
        wallet_address: str,
        message: str,
        session_id: Optional[str] = None,
        strategy: Optional[str] = None,
    ) -> None:
        """Append a strategy error to the wallet's error log."""
        record = {
            "timestamp": datetime.utcnow().isoformat(),
            "walletAddress": wallet_address,
            "sessionId": session_id,
            "strategy": strategy,
            "error": message,
        }
        self._ensure_log_directory()
        try:
            with open(self.errors_file(wallet_address), "a", encoding="utf-8") as f:
                f.write(json.dumps(record) + "\n")
        except OSError as e:
            logger.error(f"Failed to log error for {wallet_address}: {e}")

    def replay(self, wallet_address: str) -> Iterator[TradeLedgerEntry]:
        """Yield the wallet's trades oldest first, skipping unreadable lines."""
        log_file = self.trades_file(wallet_address)
        if not log_file.exists():
            return

        with open(log_file, "r", encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    yield TradeLedgerEntry.from_dict(json.loads(line))
                except (ValueError, KeyError, TypeError) as e:
                    logger.warning(f"Skipping malformed ledger line {line_no} in {log_file.name}: {e}")

    def read(self, wallet_address: str, limit: int = 50) -> List[TradeLedgerEntry]:
        """Most recent ``limit`` trades, newest first."""
        entries = list(self.replay(wallet_address))
        return list(reversed(entries[-limit:])) if limit > 0 else []

    def count(self, wallet_address: str) -> int:
        return sum(1 for _ in self.replay(wallet_address))

    def read_errors(self, wallet_address: str, limit: int = 50) -> List[dict]:
        """Most recent ``limit`` error records, newest first."""
        log_file = self.errors_file(wallet_address)
        if not log_file.exists():
            return []
        records = []
        with open(log_file, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(json.loads(line))
                except ValueError:
                    continue
        return list(reversed(records[-limit:])) if limit > 0 else []

    def wallets(self) -> List[str]:
        """Addresses that have a trade log in the ledger directory."""
        if not self.log_dir.exists():
            return []
        return sorted(
            unquote(path.name[len(TRADES_PREFIX):-len(SUFFIX)])
            for path in self.log_dir.glob(f"{TRADES_PREFIX}*{SUFFIX}")
        )
