"""
x402 client: signs EIP-3009 transfer authorizations and talks to the
settlement facilitator.

Signing happens locally with eth-account; nothing is sent on-chain from
here. The facilitator executes the transfer.
"""

import aiohttp
import asyncio
import base64
import json
import logging
import secrets
import time
from typing import Any, Callable, Dict, Optional

from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_utils import is_address, to_checksum_address
from pydantic import ValidationError

from core.config import Settings
from core.exceptions import ConfigError, FacilitatorError
from core.models import (
    AuthorizationPayload,
    PaymentAuthorization,
    PaymentRequirements,
    SettleResponse,
    TransferAuthorization,
)

logger = logging.getLogger(__name__)

ENDPOINTS = {
    "supported": "/supported",
    "verify": "/verify",
    "settle": "/settle",
}

TRANSFER_WITH_AUTHORIZATION_TYPES = {
    "TransferWithAuthorization": [
        {"name": "from", "type": "address"},
        {"name": "to", "type": "address"},
        {"name": "value", "type": "uint256"},
        {"name": "validAfter", "type": "uint256"},
        {"name": "validBefore", "type": "uint256"},
        {"name": "nonce", "type": "bytes32"},
    ],
}


class X402Client:

    def __init__(self, settings: Settings, clock: Callable[[], float] = time.time) -> None:
        if not settings.private_key:
            raise ConfigError("PRIVATE_KEY is required in environment variables")
        try:
            self._account = Account.from_key(settings.private_key)
        except Exception as e:
            raise ConfigError(f"PRIVATE_KEY is not a valid private key: {e}") from e

        self.settings = settings
        self.base_url = settings.facilitator_url.rstrip("/")
        self.timeout = settings.request_timeout
        self._clock = clock

        self.domain: Dict[str, Any] = {
            "name": settings.token.name,
            "version": settings.token.version,
            "chainId": settings.chain_id,
            "verifyingContract": to_checksum_address(settings.token.address),
        }

    @property
    def address(self) -> str:
        return self._account.address

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    @staticmethod
    def generate_nonce() -> str:
        """Random 32-byte nonce as 0x-prefixed hex."""
        return "0x" + secrets.token_bytes(32).hex()

    def encode_authorization(self, message: TransferAuthorization):
        """EIP-712 signable message for a TransferWithAuthorization."""
        return encode_typed_data(
            domain_data=self.domain,
            message_types=TRANSFER_WITH_AUTHORIZATION_TYPES,
            message_data={
                "from": to_checksum_address(message.from_),
                "to": to_checksum_address(message.to),
                "value": int(message.value),
                "validAfter": message.valid_after,
                "validBefore": message.valid_before,
                "nonce": bytes.fromhex(message.nonce[2:]),
            },
        )

    def create_payment_authorization(self, to: str, value, validity_seconds: int = 3600) -> PaymentAuthorization:
        """
        Build and sign an EIP-3009 authorization for `value` smallest units to `to`.
        Valid immediately (validAfter=0) until now + validity_seconds.
        """
        if validity_seconds <= 0:
            raise ValueError("validity_seconds must be positive")
        if not is_address(to):
            raise ValueError(f"Invalid recipient address: {to}")
        if isinstance(value, float) and not value.is_integer():
            raise ValueError(f"value must be a whole number of units, got {value}")
        amount = int(value)
        if amount < 0:
            raise ValueError("value must not be negative")

        now = int(self._clock())
        message = TransferAuthorization(
            from_=self.address,
            to=to_checksum_address(to),
            value=str(amount),
            valid_after=0,
            valid_before=now + validity_seconds,
            nonce=self.generate_nonce(),
        )

        signed = self._account.sign_message(self.encode_authorization(message))
        signature = "0x" + bytes(signed.signature).hex()

        payload = AuthorizationPayload(
            **message.model_dump(),
            signature=signature,
            asset=self.settings.token.address,
        )
        return PaymentAuthorization(payload=payload, message=message)

    def create_payment_header(self, authorization: PaymentAuthorization) -> str:
        """Base64 JSON header carrying the signed payload."""
        payment_data = {
            "x402Version": self.settings.x402_version,
            "scheme": "exact",
            "network": self.settings.network,
            "payload": authorization.payload.model_dump(by_alias=True),
        }
        return base64.b64encode(json.dumps(payment_data).encode("utf-8")).decode("ascii")

    # ------------------------------------------------------------------
    # Facilitator HTTP
    # ------------------------------------------------------------------

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X402-Version": str(self.settings.x402_version),
        }

    async def _get_json(self, path: str) -> Any:
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(f"{self.base_url}{path}") as response:
                response.raise_for_status()
                return await response.json(content_type=None)

    async def _post_json(self, path: str, body: Dict[str, Any]) -> Any:
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(f"{self.base_url}{path}", json=body,
                                        headers=self._headers()) as response:
                    try:
                        data = await response.json(content_type=None)
                    except ValueError:
                        data = None
                    if response.status >= 400:
                        raise FacilitatorError(
                            _error_message(data) or f"HTTP {response.status} from {path}",
                            status=response.status,
                            body=data,
                        )
                    return data
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise FacilitatorError(f"Facilitator request to {path} failed: {str(e) or type(e).__name__}") from e

    async def verify_payment(self, payment_header: str, requirements: PaymentRequirements) -> Dict[str, Any]:
        body = {
            "x402Version": self.settings.x402_version,
            "paymentHeader": payment_header,
            "paymentRequirements": requirements.model_dump(by_alias=True),
        }
        try:
            data = await self._post_json(ENDPOINTS["verify"], body)
        except FacilitatorError as e:
            logger.error(f"Payment verification failed: {e}")
            raise
        if not isinstance(data, dict):
            raise FacilitatorError("Malformed verify response", body=data)
        return data

    async def settle_payment(self, payment_header: str, requirements: PaymentRequirements) -> SettleResponse:
        body = {
            "x402Version": self.settings.x402_version,
            "paymentHeader": payment_header,
            "paymentRequirements": requirements.model_dump(by_alias=True),
        }
        try:
            data = await self._post_json(ENDPOINTS["settle"], body)
        except FacilitatorError as e:
            logger.error(f"Payment settlement failed: {e}")
            raise
        if not isinstance(data, dict):
            raise FacilitatorError("Malformed settle response", body=data)
        try:
            return SettleResponse.model_validate(data)
        except ValidationError as e:
            raise FacilitatorError(f"Malformed settle response: {e}", body=data) from e

    async def get_supported_networks(self) -> Optional[Any]:
        try:
            return await self._get_json(ENDPOINTS["supported"])
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error(f"Failed to get supported networks: {e}")
            return None

    async def check_health(self) -> Optional[Any]:
        """Informational only: the facilitator's supported-networks list, or None."""
        return await self.get_supported_networks()


def _error_message(data: Any) -> Optional[str]:
    if isinstance(data, dict):
        for key in ("error", "message", "errorMessage"):
            if data.get(key):
                return str(data[key])
    return None
