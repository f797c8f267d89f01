"""
Data models for the settlement engine.
No implementation logic, only Pydantic models and typed structures.
"""

from enum import Enum
from typing import Any, Dict, Optional
import time

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class PolicyType(str, Enum):
    VOLATILITY = "volatility"
    PRICE_CHANGE = "price_change"
    PRICE_THRESHOLD = "price_threshold"


class SettlementStatus(str, Enum):
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class TickerQuote(BaseModel):
    """One row of the get-ticker response, validated at the client boundary.
    Wire keys are single letters; numeric strings are coerced to float.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    instrument: Optional[str] = Field(None, alias="i")
    ask: float = Field(..., alias="a", description="Best ask price")
    bid: Optional[float] = Field(None, alias="b")
    high_24h: Optional[float] = Field(None, alias="h")
    low_24h: Optional[float] = Field(None, alias="l")
    volume_24h: Optional[float] = Field(None, alias="v")
    change_24h: Optional[float] = Field(None, alias="c", description="24h change as a fraction")
    server_ts: Optional[int] = Field(None, alias="t")


class MarketSnapshot(BaseModel):
    """Quote plus derived metrics for one symbol at one poll."""
    symbol: str
    price: float
    bid: Optional[float] = None
    high_24h: Optional[float] = None
    low_24h: Optional[float] = None
    volume_24h: Optional[float] = None
    change_24h: Optional[float] = Field(None, description="24h change in percent")
    volatility: float = Field(0.0, description="(high - low) / midpoint, percent")
    price_change: float = Field(0.0, description="Percent change vs previous poll")
    timestamp: int = Field(default_factory=lambda: int(time.time()))


class Policy(BaseModel):
    id: str
    type: PolicyType
    symbol: str
    operator: str
    threshold: float
    enabled: bool = True
    description: str = ""
    created_at: int = Field(default_factory=lambda: int(time.time()))


class Trigger(BaseModel):
    policy: Policy
    market_data: MarketSnapshot
    trigger_value: float
    triggered_at: int = Field(default_factory=lambda: int(time.time()))


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TransferAuthorization(_CamelModel):
    """Unsigned EIP-3009 TransferWithAuthorization message."""
    from_: str = Field(..., alias="from")
    to: str
    value: str
    valid_after: int = 0
    valid_before: int
    nonce: str


class AuthorizationPayload(TransferAuthorization):
    """Signed payload in the shape the facilitator expects."""
    signature: str
    asset: str


class PaymentAuthorization(BaseModel):
    payload: AuthorizationPayload
    message: TransferAuthorization


class PaymentRequirements(_CamelModel):
    scheme: str = "exact"
    network: str
    max_amount_required: str
    resource: str
    description: str
    mime_type: str = "application/json"
    pay_to: str
    max_timeout_seconds: int = 3600
    asset: str


class SettleResponse(_CamelModel):
    """Facilitator answer to /settle. Unknown keys are kept."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    status: Optional[str] = None
    tx_hash: Optional[str] = None


class SettlementRecord(BaseModel):
    """Append-only history entry, one per trigger handled."""
    policy_id: str
    triggered_at: int
    trigger_value: Optional[float] = None
    market_data: Optional[MarketSnapshot] = None
    authorization: Optional[TransferAuthorization] = None
    status: str
    tx_hash: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    timestamp: int = Field(default_factory=lambda: int(time.time()))
