"""API tests for strategy, performance, trade and oracle endpoints."""

import pytest


WALLET = "0xAAAA000000000000000000000000000000000001"
OTHER = "0xBBBB000000000000000000000000000000000002"


async def assign(client, wallet=WALLET, strategy="always-hold", config=None):
    payload = {"walletAddress": wallet, "strategy": strategy}
    if config is not None:
        payload["config"] = config
    return await client.post("/api/strategies/assign", json=payload)


class TestStrategyEndpoints:

    @pytest.mark.asyncio
    async def test_list_strategies(self, client):
        response = await client.get("/api/strategies")
        assert response.status_code == 200
        data = response.json()
        names = [s["name"] for s in data["strategies"]]
        assert "test-strategy" in names
        assert data["count"] == len(names)

    @pytest.mark.asyncio
    async def test_assign(self, client, manager):
        response = await assign(client, config={"riskLevel": "conservative"})
        assert response.status_code == 200
        data = response.json()
        assert data["walletAddress"] == WALLET
        assert data["strategy"] == "always-hold"
        assert data["status"] == "active"
        assert data["config"]["riskLevel"] == "conservative"
        assert data["sessionId"] == manager.registry.get(WALLET).session_id

    @pytest.mark.asyncio
    async def test_assign_unknown_strategy(self, client):
        response = await assign(client, strategy="arbitrage")
        assert response.status_code == 404
        assert "arbitrage" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_assign_invalid_config(self, client, manager):
        response = await assign(client, config={"slippageBps": 20000})
        assert response.status_code == 400
        assert "slippageBps" in response.json()["detail"]
        assert manager.registry.get(WALLET) is None

    @pytest.mark.asyncio
    async def test_assign_requires_wallet(self, client):
        response = await client.post("/api/strategies/assign", json={"strategy": "always-hold"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_assign_over_capacity(self, client, manager):
        manager.max_active_sessions = 1
        await assign(client)
        response = await assign(client, wallet=OTHER)
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_reassign_conflict_while_swap_settles(self, client, manager, slow_executor, wait_until):
        executor = slow_executor(delay=0.3)
        manager.executor = executor
        manager.stop_timeout = 0.05
        await assign(client, strategy="buy-every-tick")
        assert await wait_until(executor.swap_started.is_set)

        response = await assign(client, strategy="always-hold")
        assert response.status_code == 409
        assert "did not stop in time" in response.json()["detail"]

        status = (await client.get(f"/api/strategies/{WALLET}/status")).json()
        assert status["hasActiveStrategy"] is False
        assert status["status"] == "stopped"
        assert status["performance"]["totalTrades"] == 1

        response = await assign(client, strategy="always-hold")
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_status(self, client):
        response = await client.get(f"/api/strategies/{WALLET}/status")
        assert response.status_code == 200
        assert response.json() == {"hasActiveStrategy": False, "walletAddress": WALLET}

        await assign(client)
        data = (await client.get(f"/api/strategies/{WALLET}/status")).json()
        assert data["hasActiveStrategy"] is True
        assert data["strategy"] == "always-hold"
        assert data["performance"]["totalTrades"] == 0

    @pytest.mark.asyncio
    async def test_sessions(self, client):
        await assign(client)
        await assign(client, wallet=OTHER)
        await client.post(f"/api/strategies/{OTHER}/control", json={"action": "stop"})

        data = (await client.get("/api/strategies/sessions")).json()
        assert data["total"] == 2
        assert data["active"] == 1


class TestControlEndpoint:

    @pytest.mark.asyncio
    async def test_stop(self, client):
        await assign(client)

        response = await client.post(f"/api/strategies/{WALLET}/control", json={"action": "stop"})
        assert response.status_code == 200
        assert response.json()["success"] is True

        response = await client.post(f"/api/strategies/{WALLET}/control", json={"action": "stop"})
        assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_start_restarts_previous_strategy(self, client, manager):
        first = (await assign(client, config={"slippageBps": 25})).json()
        await client.post(f"/api/strategies/{WALLET}/control", json={"action": "stop"})

        response = await client.post(f"/api/strategies/{WALLET}/control", json={"action": "start"})
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["sessionId"] != first["sessionId"]

        session = manager.registry.get(WALLET)
        assert session.is_active
        assert session.selected_strategy == "always-hold"
        assert session.config.slippage_bps == 25

    @pytest.mark.asyncio
    async def test_start_with_new_strategy(self, client, manager):
        response = await client.post(
            f"/api/strategies/{WALLET}/control",
            json={"action": "start", "strategy": "test-strategy", "config": {"autoTrade": False}},
        )
        assert response.status_code == 200
        assert manager.registry.get(WALLET).selected_strategy == "test-strategy"
        assert manager.registry.get(WALLET).config.auto_trade is False

    @pytest.mark.asyncio
    async def test_start_without_strategy_or_history(self, client):
        response = await client.post(f"/api/strategies/{WALLET}/control", json={"action": "start"})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_invalid_action(self, client):
        response = await client.post(f"/api/strategies/{WALLET}/control", json={"action": "pause"})
        assert response.status_code == 400


class TestConfigEndpoint:

    @pytest.mark.asyncio
    async def test_update(self, client):
        await assign(client)
        response = await client.put(f"/api/strategies/{WALLET}/config", json={"maxTradeSize": 10})
        assert response.status_code == 200
        data = response.json()
        assert data["config"]["maxTradeSize"] == 10.0
        assert data["config"]["slippageBps"] == 100

    @pytest.mark.asyncio
    async def test_update_unknown_wallet(self, client):
        response = await client.put(f"/api/strategies/{WALLET}/config", json={"maxTradeSize": 10})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_update_invalid(self, client):
        await assign(client)
        response = await client.put(f"/api/strategies/{WALLET}/config", json={"autoTrade": "sometimes"})
        assert response.status_code == 400


class TestPerformanceAndTrades:

    @pytest.mark.asyncio
    async def test_performance_unknown_wallet(self, client):
        response = await client.get(f"/api/performance/{WALLET}")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_performance_and_trades(self, client, manager, wait_until):
        await assign(client, strategy="test-strategy")
        assert await wait_until(lambda: manager.ledger.count(WALLET) == 1)

        performance = (await client.get(f"/api/performance/{WALLET}")).json()
        assert performance["walletAddress"] == WALLET
        assert performance["performance"]["totalTrades"] == 1
        assert performance["performance"]["winRate"] == 1.0

        trades = (await client.get(f"/api/trades/{WALLET}?limit=10")).json()
        assert trades["totalTrades"] == 1
        assert trades["trades"][0]["beneficiary"] == WALLET
        assert trades["trades"][0]["executedBy"] == manager.executor.signer_address

    @pytest.mark.asyncio
    async def test_trades_unknown_wallet(self, client):
        data = (await client.get(f"/api/trades/{WALLET}")).json()
        assert data == {"trades": [], "totalTrades": 0, "walletAddress": WALLET}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [0, 1001])
    async def test_trades_limit_validated(self, client, limit):
        response = await client.get(f"/api/trades/{WALLET}?limit={limit}")
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_trade_errors(self, client, manager):
        manager.ledger.log_error(WALLET, "Quote timed out after 30s")
        data = (await client.get(f"/api/trades/{WALLET}/errors")).json()
        assert data["errors"][0]["error"] == "Quote timed out after 30s"

    @pytest.mark.asyncio
    async def test_read_endpoints_hide_session_token(self, client, manager, wait_until):
        token = (await assign(client, strategy="test-strategy")).json()["sessionId"]
        await assign(client, wallet=OTHER)
        assert await wait_until(lambda: manager.ledger.count(WALLET) == 1)
        manager.ledger.log_error(WALLET, "Quote timed out after 30s", token, "test-strategy")

        for path in (
            "/api/strategies/sessions",
            f"/api/strategies/{WALLET}/status",
            f"/api/performance/{WALLET}",
            f"/api/trades/{WALLET}",
            f"/api/trades/{WALLET}/errors",
        ):
            response = await client.get(path)
            assert response.status_code == 200
            assert token not in response.text
            assert "sessionId" not in response.text


class TestOracleEndpoints:

    @pytest.mark.asyncio
    async def test_global_status(self, client):
        response = await client.get("/api/oracle/status")
        assert response.status_code == 200
        assert response.json()["formattedCountdown"] == "02:00:00"

    @pytest.mark.asyncio
    async def test_wallet_status_and_preferences(self, client):
        status = (await client.get(f"/api/oracle/wallet/{WALLET}/status")).json()
        assert status["isSubscribedToGlobal"] is True

        response = await client.put(
            f"/api/oracle/wallet/{WALLET}/preferences",
            json={"frequency": "custom", "customInterval": 900},
        )
        assert response.status_code == 200
        oracle = response.json()["oracle"]
        assert oracle["personalPreferences"] == {"frequency": "custom", "customInterval": 900}
        assert oracle["formattedCountdown"] == "00:15:00"

        wallets = (await client.get("/api/oracle/wallets")).json()["walletOracles"]
        assert [w["walletAddress"] for w in wallets] == [WALLET]

    @pytest.mark.asyncio
    async def test_invalid_preferences(self, client):
        response = await client.put(
            f"/api/oracle/wallet/{WALLET}/preferences", json={"frequency": "yearly"}
        )
        assert response.status_code == 400


class TestWebSocketStats:

    @pytest.mark.asyncio
    async def test_stats(self, client):
        response = await client.get("/api/ws/stats")
        assert response.json() == {"connections": 0}
