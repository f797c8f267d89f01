"""
Settlement engine: the poll loop that ties market data, policies and
x402 settlement together.

One asyncio task runs the loop. Each iteration fetches all monitored
symbols concurrently, evaluates the policies, and settles every trigger
one after another. Failures inside an iteration are logged (settlement
failures are also recorded) and the next iteration runs as usual.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from clients.market_client import MarketDataClient
from clients.x402_client import X402Client
from core.config import Settings
from core.models import (
    PaymentRequirements,
    SettleResponse,
    SettlementRecord,
    SettlementStatus,
    Trigger,
)
from core.policy_engine import PolicyEngine

logger = logging.getLogger(__name__)

SETTLEMENT_TIMEOUT_SECONDS = 3600


class SettlementEngine:

    def __init__(
        self,
        settings: Settings,
        market_client: MarketDataClient,
        policy_engine: PolicyEngine,
        x402_client: X402Client,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.market_client = market_client
        self.policy_engine = policy_engine
        self.x402_client = x402_client
        self._clock = clock

        self.monitored_symbols: List[str] = list(settings.monitored_symbols)
        self.is_running = False
        self._stop_event = asyncio.Event()

        # owned here, passed to the market client by reference
        self.last_prices: Dict[str, float] = {}
        self.settlement_history: List[SettlementRecord] = []

    @classmethod
    def from_settings(cls, settings: Settings) -> "SettlementEngine":
        """Wire the default clients for a validated Settings."""
        return cls(
            settings=settings,
            market_client=MarketDataClient(settings.market_data_url, timeout=settings.request_timeout),
            policy_engine=PolicyEngine(
                volatility_threshold=settings.volatility_threshold,
                price_change_threshold=settings.price_change_threshold,
                symbol=settings.policy_symbol,
            ),
            x402_client=X402Client(settings),
        )

    async def start(self) -> None:
        """Health check, then poll until stop() is called.

        A stop() issued before start() gets to run is honoured: start()
        returns without polling.
        """
        if self._stop_event.is_set():
            self._stop_event.clear()
            logger.info("Stop requested before start - not polling")
            return

        s = self.settings
        logger.info("Starting policy-triggered x402 settlement engine")
        logger.info(f"Network: {s.network} (chain id {s.chain_id})")
        logger.info(f"Wallet: {self.x402_client.address}")
        logger.info(f"Recipient: {s.settlement_recipient}")
        logger.info(f"Settlement amount: {s.settlement_amount} USDC.e units")
        logger.info(f"Polling interval: {s.poll_interval_seconds}s")
        logger.info(f"Active policies: {len(self.policy_engine.get_active_policies())}")

        self.is_running = True
        try:
            health = await self.x402_client.check_health()
            if health is not None:
                logger.info("x402 facilitator is healthy")
            else:
                logger.warning("x402 facilitator health check failed - continuing anyway")

            await self.run_polling_loop()
        finally:
            self.is_running = False
            # consumed; a later start() polls again
            self._stop_event.clear()

    def stop(self) -> None:
        """Ask the loop to exit. An in-flight request is allowed to finish."""
        if self.is_running:
            logger.info("Stopping settlement engine...")
        self.is_running = False
        self._stop_event.set()

    async def run_polling_loop(self) -> None:
        while self.is_running:
            try:
                await self.check_and_settle()
            except Exception:
                logger.exception("Error in polling loop")

            if not self.is_running:
                break
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.settings.poll_interval_seconds)
            except asyncio.TimeoutError:
                pass

    async def check_and_settle(self) -> List[SettlementRecord]:
        """One poll: fetch, evaluate, settle. Returns the records added."""
        logger.info("Fetching market data...")
        snapshots = await self.market_client.get_multiple_market_data(
            self.monitored_symbols, self.last_prices
        )
        if not snapshots:
            logger.info("No market data available")
            return []

        for data in snapshots:
            logger.info(
                f"{data.symbol}: ${data.price:.2f} | Volatility: {data.volatility:.2f}% "
                f"| Change: {data.price_change:.2f}%"
            )

        triggered = self.policy_engine.evaluate_policies(snapshots)

        records = []
        for trigger in triggered:
            records.append(await self.execute_settlement(trigger))
        return records

    def build_payment_requirements(self, trigger: Trigger) -> PaymentRequirements:
        s = self.settings
        return PaymentRequirements(
            scheme="exact",
            network=s.network,
            max_amount_required=s.settlement_amount,
            resource=f"settlement:{trigger.policy.id}",
            description=f"Auto-settlement triggered by {trigger.policy.description}",
            pay_to=s.settlement_recipient,
            max_timeout_seconds=SETTLEMENT_TIMEOUT_SECONDS,
            asset=s.token.address,
        )

    async def execute_settlement(self, trigger: Trigger) -> SettlementRecord:
        """Sign, submit and record one settlement. Never raises."""
        s = self.settings
        logger.info(f"Executing settlement for policy: {trigger.policy.id}")

        try:
            authorization = self.x402_client.create_payment_authorization(
                s.settlement_recipient,
                s.settlement_amount,
                s.authorization_validity_seconds,
            )
            logger.info(
                f"Payment authorization created: {authorization.message.from_} -> "
                f"{authorization.message.to}, {authorization.message.value} USDC.e units"
            )

            payment_header = self.x402_client.create_payment_header(authorization)
            requirements = self.build_payment_requirements(trigger)

            logger.info("Submitting settlement to x402 facilitator...")
            response = await self.x402_client.settle_payment(payment_header, requirements)
            result = response.model_dump(by_alias=True)
            logger.debug(f"Facilitator response: {result}")

            record = SettlementRecord(
                policy_id=trigger.policy.id,
                triggered_at=trigger.triggered_at,
                trigger_value=trigger.trigger_value,
                market_data=trigger.market_data,
                authorization=authorization.message,
                status=settlement_status(response),
                tx_hash=response.tx_hash,
                result=result,
                timestamp=int(self._clock()),
            )
            if record.tx_hash:
                logger.info(f"Settlement confirmed on-chain, tx hash {record.tx_hash}")
            else:
                logger.warning(f"Settlement submitted (status: {record.status})")

        except Exception as e:
            logger.error(f"Settlement failed for policy {trigger.policy.id}: {e}")
            record = SettlementRecord(
                policy_id=trigger.policy.id,
                triggered_at=trigger.triggered_at,
                trigger_value=trigger.trigger_value,
                market_data=trigger.market_data,
                status=SettlementStatus.FAILED.value,
                error=str(e) or type(e).__name__,
                timestamp=int(self._clock()),
            )

        self.settlement_history.append(record)
        logger.info(f"Total settlements: {len(self.settlement_history)}")
        return record

    def get_settlement_history(self) -> List[SettlementRecord]:
        return list(self.settlement_history)

    def get_status(self) -> Dict[str, Any]:
        s = self.settings
        return {
            "network": s.network,
            "chain_id": s.chain_id,
            "rpc_url": s.rpc_url,
            "wallet": self.x402_client.address,
            "recipient": s.settlement_recipient,
            "settlement_amount": s.settlement_amount,
            "poll_interval_seconds": s.poll_interval_seconds,
            "monitored_symbols": list(self.monitored_symbols),
            "active_policies": len(self.policy_engine.get_active_policies()),
            "total_settlements": len(self.settlement_history),
            "running": self.is_running,
        }


def settlement_status(response: Optional[SettleResponse]) -> str:
    """Status to record for a well-formed facilitator response.

    The facilitator's own status wins; otherwise a tx hash means
    confirmed and anything else means submitted.
    """
    if response is None:
        return SettlementStatus.SUBMITTED.value
    if response.status:
        return response.status
    if response.tx_hash:
        return SettlementStatus.CONFIRMED.value
    return SettlementStatus.SUBMITTED.value
