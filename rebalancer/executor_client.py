"""
executor_client.py — HTTP clients for a remote execution gateway.

In live mode the agent does not hold keys or build transactions itself. A
gateway service does that and exposes a small JSON API, which these clients
wrap behind the collaborator contracts from execution_service.py:

  GET  /quote?inputAsset=&outputAsset=&amount=&slippageBps=
  POST /swap                         {walletId, inputAsset, outputAsset, amount, ...}
  GET  /wallets/{wallet_id}/portfolio
  POST /economy/initialize           {treasuryWallet, traderWallet, operationalWallets}
  POST /economy/mint                 {mintAddress, walletId, amount, reason}
  POST /economy/transfer             {mintAddress, fromWallet, toWallet, amount, reason}
  GET  /economy/balance?mintAddress=&walletId=

Every transport, status or payload problem surfaces as ExecutionError. No
retries happen here; the risk ledger decides what a failure means.

Usage:
    gateway = GatewayClient("http://localhost:8080")
    executor = HttpExecutionService(gateway)
    quote = await executor.fetch_quote("SOL", "USDC", 1.0, 50)
"""

from __future__ import annotations

from typing import Any, Optional

import httpx
from loguru import logger

from execution_service import (
    AgentTopology,
    EconomySetup,
    ExecutionError,
    ExecutionService,
    SwapExecution,
    SwapQuote,
    TokenService,
    WalletPortfolio,
    WalletQueryService,
)


DEFAULT_TIMEOUT_SECONDS = 10.0


# ─── Gateway Transport ────────────────────────────────────────────────────────


class GatewayClient:
    """
    Thin JSON-over-HTTP wrapper shared by the service clients.

    ``transport`` is passed straight to httpx.AsyncClient (tests use
    httpx.MockTransport).
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        payload: Optional[dict[str, Any]] = None,
    ) -> dict:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(method, url, params=params, json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            detail = _error_detail(exc.response)
            raise ExecutionError(
                f"Gateway {method} {path} failed with {exc.response.status_code}: {detail}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ExecutionError(f"Gateway {method} {path} unreachable: {exc}") from exc
        except ValueError as exc:
            raise ExecutionError(f"Gateway {method} {path} returned invalid JSON") from exc

        if not isinstance(data, dict):
            raise ExecutionError(f"Gateway {method} {path} returned unexpected payload")
        return data


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("error") or body.get("message") or body)
    return str(body)


def _number(data: dict, key: str, default: Optional[float] = None) -> float:
    value = data.get(key, default)
    if value is None:
        raise ExecutionError(f"Gateway response missing {key}")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ExecutionError(f"Gateway response field {key} is not numeric: {value!r}") from exc


# ─── Execution ────────────────────────────────────────────────────────────────


class HttpExecutionService(ExecutionService):

    def __init__(self, gateway: GatewayClient) -> None:
        self.gateway = gateway

    async def fetch_quote(
        self, input_asset: str, output_asset: str, amount: float, slippage_bps: float
    ) -> SwapQuote:
        data = await self.gateway.request("GET", "/quote", params={
            "inputAsset": input_asset,
            "outputAsset": output_asset,
            "amount": amount,
            "slippageBps": slippage_bps,
        })
        return SwapQuote(
            input_asset=input_asset,
            output_asset=output_asset,
            in_amount=_number(data, "inAmount", amount),
            out_amount=_number(data, "outAmount"),
            slippage_bps=_number(data, "slippageBps", slippage_bps),
            route=[str(hop) for hop in data.get("route", [])],
        )

    async def execute_swap(
        self,
        wallet_id: str,
        input_asset: str,
        output_asset: str,
        amount: float,
        slippage_bps: float,
        max_allowed_slippage_bps: float,
        reason_ref: str,
    ) -> SwapExecution:
        if slippage_bps > max_allowed_slippage_bps:
            raise ExecutionError(
                f"Requested slippage {slippage_bps} bps exceeds allowed "
                f"{max_allowed_slippage_bps} bps"
            )

        data = await self.gateway.request("POST", "/swap", payload={
            "walletId": wallet_id,
            "inputAsset": input_asset,
            "outputAsset": output_asset,
            "amount": amount,
            "slippageBps": slippage_bps,
            "maxAllowedSlippageBps": max_allowed_slippage_bps,
            "reasonRef": reason_ref,
        })
        signature = data.get("signature")
        if not signature:
            raise ExecutionError("Gateway swap response missing signature")

        result = SwapExecution(
            signature=str(signature),
            in_amount=_number(data, "inAmount", amount),
            out_amount=_number(data, "outAmount"),
            slippage_bps=_number(data, "slippageBps", slippage_bps),
            route=[str(hop) for hop in data.get("route", [])],
            explorer_url=data.get("explorerUrl"),
        )
        logger.info(
            f"HttpExecutionService: {amount} {input_asset} → {result.out_amount} "
            f"{output_asset} tx={result.signature[:10]}..."
        )
        return result


# ─── Wallets ──────────────────────────────────────────────────────────────────


class HttpWalletService(WalletQueryService):

    def __init__(self, gateway: GatewayClient) -> None:
        self.gateway = gateway

    async def get_portfolio(self, wallet_id: str) -> WalletPortfolio:
        data = await self.gateway.request("GET", f"/wallets/{wallet_id}/portfolio")
        aux_raw = data.get("auxBalances") or {}
        if not isinstance(aux_raw, dict):
            raise ExecutionError("Gateway portfolio auxBalances must be an object")
        return WalletPortfolio(
            wallet_id=wallet_id,
            base_balance=_number(data, "baseBalance", 0.0),
            quote_balance=_number(data, "quoteBalance", 0.0),
            aux_balances={asset: _number(aux_raw, asset) for asset in aux_raw},
        )


# ─── Token Economy ────────────────────────────────────────────────────────────


class HttpTokenService(TokenService):

    def __init__(self, gateway: GatewayClient) -> None:
        self.gateway = gateway

    async def initialize_economy(self, topology: AgentTopology) -> EconomySetup:
        data = await self.gateway.request("POST", "/economy/initialize", payload={
            "treasuryWallet": topology.treasury_wallet,
            "traderWallet": topology.trader_wallet,
            "operationalWallets": list(topology.operational_wallets),
        })
        mint = data.get("mintAddress")
        if not mint:
            raise ExecutionError("Gateway economy response missing mintAddress")
        return EconomySetup(mint_address=str(mint))

    async def mint_to(self, mint_address: str, wallet_id: str, amount: float, reason: str) -> str:
        data = await self.gateway.request("POST", "/economy/mint", payload={
            "mintAddress": mint_address,
            "walletId": wallet_id,
            "amount": amount,
            "reason": reason,
        })
        return _signature(data)

    async def transfer(
        self, mint_address: str, from_wallet: str, to_wallet: str, amount: float, reason: str
    ) -> str:
        data = await self.gateway.request("POST", "/economy/transfer", payload={
            "mintAddress": mint_address,
            "fromWallet": from_wallet,
            "toWallet": to_wallet,
            "amount": amount,
            "reason": reason,
        })
        return _signature(data)

    async def balance_of(self, mint_address: str, wallet_id: str) -> float:
        data = await self.gateway.request("GET", "/economy/balance", params={
            "mintAddress": mint_address,
            "walletId": wallet_id,
        })
        return _number(data, "amount", 0.0)


def _signature(data: dict) -> str:
    signature = data.get("signature")
    if not signature:
        raise ExecutionError("Gateway response missing signature")
    return str(signature)
