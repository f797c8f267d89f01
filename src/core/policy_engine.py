"""
Policy store and evaluator.

Holds the threshold rules and decides, for a batch of market snapshots,
which of them currently fire. Evaluation never raises: a policy whose
symbol is missing from the batch, or whose type/operator is unknown, is
skipped.
"""

import logging
import math
import time
from typing import Callable, Dict, List, Optional, Sequence

from core.models import MarketSnapshot, Policy, PolicyType, Trigger

logger = logging.getLogger(__name__)

OPERATORS: Dict[str, Callable[[float, float], bool]] = {
    ">": lambda v, t: v > t,
    "<": lambda v, t: v < t,
    ">=": lambda v, t: v >= t,
    "<=": lambda v, t: v <= t,
    "==": lambda v, t: v == t,
    "abs>": lambda v, t: abs(v) > t,
    "abs<": lambda v, t: abs(v) < t,
}


class PolicyEngine:

    def __init__(
        self,
        volatility_threshold: float = 5.0,
        price_change_threshold: float = 3.0,
        symbol: str = "BTC_USDT",
        clock: Callable[[], float] = time.time,
        load_defaults: bool = True,
    ) -> None:
        self._clock = clock
        self.policies: List[Policy] = []
        if load_defaults:
            self.load_default_policies(volatility_threshold, price_change_threshold, symbol)

    def load_default_policies(self, volatility_threshold: float, price_change_threshold: float,
                              symbol: str = "BTC_USDT") -> None:
        base = symbol.split("_")[0]
        self.add_policy(
            id="default-volatility",
            type=PolicyType.VOLATILITY,
            symbol=symbol,
            operator=">",
            threshold=volatility_threshold,
            description=f"Settle when {base} volatility exceeds {volatility_threshold}%",
        )
        self.add_policy(
            id="default-price-change",
            type=PolicyType.PRICE_CHANGE,
            symbol=symbol,
            operator="abs>",
            threshold=price_change_threshold,
            description=f"Settle when {base} price changes more than {price_change_threshold}%",
        )

    def add_policy(self, **fields) -> Policy:
        """Add a policy, stamping enabled=True and created_at.
        An existing policy with the same id is replaced.
        """
        fields.setdefault("enabled", True)
        fields["created_at"] = int(self._clock())
        policy = Policy(**fields)
        self.policies = [p for p in self.policies if p.id != policy.id]
        self.policies.append(policy)
        return policy

    def remove_policy(self, policy_id: str) -> None:
        self.policies = [p for p in self.policies if p.id != policy_id]

    def get_policy(self, policy_id: str) -> Optional[Policy]:
        for policy in self.policies:
            if policy.id == policy_id:
                return policy
        return None

    def get_active_policies(self) -> List[Policy]:
        return [p for p in self.policies if p.enabled]

    @staticmethod
    def evaluate_condition(value: float, operator: str, threshold: float) -> bool:
        """Apply a comparison operator; unrecognized operators never match."""
        compare = OPERATORS.get(operator)
        if compare is None:
            return False
        return compare(value, threshold)

    @staticmethod
    def select_metric(policy: Policy, snapshot: MarketSnapshot) -> Optional[float]:
        if policy.type == PolicyType.VOLATILITY:
            return snapshot.volatility
        if policy.type == PolicyType.PRICE_CHANGE:
            return snapshot.price_change
        if policy.type == PolicyType.PRICE_THRESHOLD:
            return snapshot.price
        return None

    def evaluate_policies(self, snapshots: Sequence[MarketSnapshot]) -> List[Trigger]:
        """Return one Trigger per enabled policy whose condition holds."""
        by_symbol: Dict[str, MarketSnapshot] = {}
        for snapshot in snapshots:
            # first snapshot wins when a symbol appears twice
            by_symbol.setdefault(snapshot.symbol, snapshot)

        triggered: List[Trigger] = []
        for policy in self.policies:
            if not policy.enabled:
                continue
            snapshot = by_symbol.get(policy.symbol)
            if snapshot is None:
                continue
            value = self.select_metric(policy, snapshot)
            if value is None or math.isnan(value):
                continue
            if not self.evaluate_condition(value, policy.operator, policy.threshold):
                continue

            triggered.append(
                Trigger(
                    policy=policy,
                    market_data=snapshot,
                    trigger_value=value,
                    triggered_at=int(self._clock()),
                )
            )
            logger.info(
                f"Policy triggered: {policy.description} "
                f"(value {value:.2f}, threshold {policy.threshold})"
            )
        return triggered
