"""Swap execution against the DEX through a shared signer account.

Every wallet's trades are signed by one operator account. The executor
records the wallet a swap was made for (``beneficiary``) next to the
account that signed it (``executed_by``) so trades stay attributable.
"""

import asyncio
import logging
import random
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

import aiohttp

from ..models.trade import Balance, SwapQuote, SwapResult

logger = logging.getLogger(__name__)

DEFAULT_FEE_TIER = 3000  # 0.30%


def fee_rate(fee_tier: int) -> float:
    """Convert a fee tier in hundredths of a bip to a fraction."""
    return fee_tier / 1_000_000


class SwapExecutor(ABC):
    """Interface to the DEX used by every strategy runner."""

    signer_address: str = ""

    @abstractmethod
    async def get_quote(
        self,
        token_in: str,
        token_out: str,
        amount_in: float,
    ) -> SwapQuote:
        """Quote a swap of ``amount_in`` of ``token_in`` into ``token_out``."""

    @abstractmethod
    async def execute_swap(
        self,
        token_in: str,
        token_out: str,
        amount_in: float,
        min_amount_out: float,
        fee_tier: int,
        beneficiary: str,
    ) -> SwapResult:
        """Execute a swap on behalf of ``beneficiary``."""

    @abstractmethod
    async def get_balances(self) -> List[Balance]:
        """Balances held by the signer account."""

    async def close(self) -> None:
        """Release any held resources."""


class SimulatedSwapExecutor(SwapExecutor):
    """In-process executor for dry runs and tests.

    Prices follow a small random walk around their starting value so the
    reference strategies see some movement.
    """

    def __init__(
        self,
        signer_address: str = "client|strategyhub-signer",
        prices: Optional[Dict[str, float]] = None,
        balances: Optional[Dict[str, float]] = None,
        volatility: float = 0.002,
        max_slippage: float = 0.001,
        seed: Optional[int] = None,
    ):
        """Initialize simulated executor.

        Args:
            signer_address: Account reported as ``executed_by``
            prices: Token prices in a common unit (GUSDC by default)
            balances: Initial signer balances per token
            volatility: Standard deviation of the per-quote price step
            max_slippage: Upper bound of the simulated execution shortfall
            seed: Seed for reproducible prices
        """
        self.signer_address = signer_address
        self._prices = dict(prices or {"GUSDC": 1.0, "GALA": 0.02, "GWETH": 2500.0})
        self._balances = dict(balances or {"GUSDC": 10000.0, "GALA": 500000.0})
        self._volatility = volatility
        self._max_slippage = max_slippage
        self._rng = random.Random(seed)

    def _price(self, token: str) -> float:
        price = self._prices.get(token)
        if price is None:
            raise ValueError(f"Unknown token: {token}")
        return price

    def _step_prices(self) -> None:
        for token, price in self._prices.items():
            if token == "GUSDC":
                continue
            self._prices[token] = max(price * (1 + self._rng.gauss(0, self._volatility)), 1e-12)

    async def get_quote(self, token_in: str, token_out: str, amount_in: float) -> SwapQuote:
        self._step_prices()
        price = self._price(token_in) / self._price(token_out)
        expected_out = amount_in * price * (1 - fee_rate(DEFAULT_FEE_TIER))
        return SwapQuote(
            token_in=token_in,
            token_out=token_out,
            amount_in=amount_in,
            expected_out=expected_out,
            price=price,
            fee_tier=DEFAULT_FEE_TIER,
            timestamp=datetime.utcnow(),
        )

    async def execute_swap(
        self,
        token_in: str,
        token_out: str,
        amount_in: float,
        min_amount_out: float,
        fee_tier: int,
        beneficiary: str,
    ) -> SwapResult:
        price = self._price(token_in) / self._price(token_out)
        expected_out = amount_in * price * (1 - fee_rate(fee_tier))
        result = SwapResult(
            success=False,
            token_in=token_in,
            token_out=token_out,
            amount_in=amount_in,
            expected_out=expected_out,
            beneficiary=beneficiary,
            executed_by=self.signer_address,
        )

        if self._balances.get(token_in, 0.0) < amount_in:
            result.error = f"Insufficient {token_in} balance"
            logger.warning(f"Simulated swap for {beneficiary} rejected: {result.error}")
            return result

        actual_out = expected_out * (1 - self._rng.uniform(0, self._max_slippage))
        if actual_out < min_amount_out:
            result.error = (
                f"Slippage exceeded: got {actual_out:.8f}, minimum {min_amount_out:.8f}"
            )
            logger.warning(f"Simulated swap for {beneficiary} rejected: {result.error}")
            return result

        self._balances[token_in] -= amount_in
        self._balances[token_out] = self._balances.get(token_out, 0.0) + actual_out

        result.success = True
        result.actual_out = actual_out
        result.transaction_id = f"sim-{uuid.uuid4().hex[:16]}"
        logger.info(
            f"Simulated swap {amount_in:.6f} {token_in} -> {actual_out:.6f} {token_out} "
            f"for {beneficiary}"
        )
        return result

    async def get_balances(self) -> List[Balance]:
        return [Balance(token=token, free=amount) for token, amount in self._balances.items()]


class GatewaySwapExecutor(SwapExecutor):
    """Executor backed by an HTTP swap gateway that holds the signer key."""

    def __init__(
        self,
        gateway_url: str,
        signer_address: str,
        retry_count: int = 3,
        retry_delay: float = 1.0,
    ):
        self.gateway_url = gateway_url.rstrip("/")
        self.signer_address = signer_address
        self._retry_count = retry_count
        self._retry_delay = retry_delay
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=30)
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        session = await self._get_session()
        async with session.request(method, f"{self.gateway_url}{path}", **kwargs) as response:
            response.raise_for_status()
            return await response.json()

    async def _execute_with_retry(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        """Call the gateway, retrying transient network failures.

        Raises:
            The last exception if all retries fail
        """
        last_exception: Optional[Exception] = None

        for attempt in range(self._retry_count):
            try:
                return await self._request(method, path, **kwargs)
            except aiohttp.ClientResponseError as e:
                if e.status == 429:
                    logger.warning(f"Gateway rate limit, waiting... (attempt {attempt + 1})")
                    await asyncio.sleep(self._retry_delay * (attempt + 1) * 2)
                    last_exception = e
                elif e.status >= 500:
                    logger.warning(f"Gateway error {e.status}, retrying... (attempt {attempt + 1})")
                    await asyncio.sleep(self._retry_delay * (attempt + 1))
                    last_exception = e
                else:
                    logger.error(f"Gateway rejected request: {e.status} {e.message}")
                    raise
            except aiohttp.ClientError as e:
                logger.warning(f"Network error, retrying... (attempt {attempt + 1}): {e}")
                await asyncio.sleep(self._retry_delay * (attempt + 1))
                last_exception = e

        raise last_exception

    async def get_quote(self, token_in: str, token_out: str, amount_in: float) -> SwapQuote:
        data = await self._execute_with_retry(
            "POST",
            "/quote",
            json={"tokenIn": token_in, "tokenOut": token_out, "amountIn": amount_in},
        )
        return SwapQuote(
            token_in=token_in,
            token_out=token_out,
            amount_in=amount_in,
            expected_out=float(data["amountOut"]),
            price=float(data.get("price", 0.0)),
            fee_tier=int(data.get("feeTier", DEFAULT_FEE_TIER)),
            timestamp=datetime.utcnow(),
        )

    async def execute_swap(
        self,
        token_in: str,
        token_out: str,
        amount_in: float,
        min_amount_out: float,
        fee_tier: int,
        beneficiary: str,
    ) -> SwapResult:
        # Swaps are not retried: a resend could execute twice
        data = await self._request(
            "POST",
            "/swap",
            json={
                "tokenIn": token_in,
                "tokenOut": token_out,
                "amountIn": amount_in,
                "minAmountOut": min_amount_out,
                "feeTier": fee_tier,
                "signer": self.signer_address,
                "beneficiary": beneficiary,
            },
        )
        return SwapResult(
            success=bool(data.get("success", False)),
            token_in=token_in,
            token_out=token_out,
            amount_in=amount_in,
            expected_out=float(data.get("expectedOut", min_amount_out)),
            actual_out=float(data.get("amountOut", 0.0)),
            beneficiary=beneficiary,
            executed_by=self.signer_address,
            transaction_id=data.get("transactionId"),
            error=data.get("error"),
        )

    async def get_balances(self) -> List[Balance]:
        data = await self._execute_with_retry(
            "GET", "/balances", params={"owner": self.signer_address}
        )
        return [
            Balance(
                token=item["token"],
                free=float(item.get("free", 0.0)),
                locked=float(item.get("locked", 0.0)),
            )
            for item in data.get("balances", [])
        ]


def create_swap_executor(config) -> SwapExecutor:
    """Build the executor selected by the ``executor`` config section."""
    mode = config.get("executor.mode")
    signer = config.get("executor.signer_address")

    if mode == "gateway":
        gateway_url = config.get("executor.gateway_url")
        if not gateway_url:
            raise ValueError("executor.gateway_url is required in gateway mode")
        logger.info(f"Using swap gateway at {gateway_url} (signer {signer})")
        return GatewaySwapExecutor(
            gateway_url=gateway_url,
            signer_address=signer,
            retry_count=config.get("executor.retry_count"),
            retry_delay=config.get("executor.retry_delay_seconds"),
        )

    logger.info(f"Using simulated swap executor (signer {signer})")
    return SimulatedSwapExecutor(signer_address=signer)
