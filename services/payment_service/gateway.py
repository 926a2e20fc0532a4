"""
M-Pesa Daraja client: OAuth token exchange and STK (push) payment requests.

Every call carries an explicit timeout. Failures are raised as
UpstreamError subclasses with the gateway's own status and message so the
caller can surface them verbatim; nothing here retries.
"""
import base64
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import httpx
import structlog

from shared.config.settings import Settings
from shared.errors import GatewayAuthError, UpstreamError
from shared.observability import gateway_request_duration_seconds

logger = structlog.get_logger(__name__)

TOKEN_PATH = "/oauth/v1/generate"
STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"

# Refresh this many seconds before the gateway-reported expiry
TOKEN_EXPIRY_MARGIN = 60
DEFAULT_TOKEN_TTL = 3599

RETRY_TIP = "Please try again in a few moments."
SANDBOX_TIP = "For sandbox testing: phone=254708374149, PIN=4103"


@dataclass(frozen=True)
class PushResult:
    checkout_request_id: str
    merchant_request_id: Optional[str]
    response_description: str
    raw: dict = field(default_factory=dict)


def _json_body(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text


class MpesaGateway:
    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None, clock=time.monotonic):
        self.settings = settings
        self.client = client or httpx.AsyncClient()
        self._clock = clock
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    @property
    def environment(self) -> str:
        return self.settings.gateway_environment

    @property
    def base_url(self) -> str:
        return self.settings.gateway_base_url

    def describe(self) -> dict:
        """Configuration summary safe to expose (no credentials)."""
        return {
            "environment": self.environment,
            "configured": self.settings.gateway_configured,
            "shortCode": self.settings.mpesa_short_code,
            "baseUrl": self.base_url,
            "callbackUrl": self.settings.mpesa_callback_url,
        }

    @staticmethod
    def timestamp(now: Optional[datetime] = None) -> str:
        return (now or datetime.now()).strftime("%Y%m%d%H%M%S")

    def password(self, timestamp: str) -> str:
        raw = f"{self.settings.mpesa_short_code}{self.settings.mpesa_pass_key}{timestamp}"
        return base64.b64encode(raw.encode("utf-8")).decode("ascii")

    def _error_context(self, error: Any) -> dict:
        tip = RETRY_TIP if self.environment == "production" else f"{RETRY_TIP} {SANDBOX_TIP}"
        return {"error": error, "environment": self.environment, "tip": tip}

    def invalidate_token(self) -> None:
        self._token = None
        self._token_expires_at = 0.0

    async def get_token(self, force_refresh: bool = False) -> str:
        """Return a bearer token, reusing the cached one until shortly before it expires."""
        if not force_refresh and self._token and self._clock() < self._token_expires_at:
            return self._token

        if not self.settings.gateway_configured:
            raise GatewayAuthError(
                "M-Pesa auth failed: M-Pesa credentials not configured",
                **self._error_context("missing consumer key/secret"),
            )

        logger.info("mpesa_token_requested", environment=self.environment)
        try:
            with gateway_request_duration_seconds.labels(operation="token").time():
                resp = await self.client.get(
                    f"{self.base_url}{TOKEN_PATH}",
                    params={"grant_type": "client_credentials"},
                    auth=(self.settings.mpesa_consumer_key, self.settings.mpesa_consumer_secret),
                    timeout=self.settings.gateway_token_timeout,
                )
        except httpx.TimeoutException as e:
            logger.error("mpesa_token_timeout", error=str(e))
            raise GatewayAuthError("M-Pesa auth failed: request timed out", **self._error_context(str(e)))
        except httpx.HTTPError as e:
            logger.error("mpesa_token_request_error", error=str(e))
            raise GatewayAuthError(f"M-Pesa auth failed: {e}", **self._error_context(str(e)))

        body = _json_body(resp)
        if resp.status_code != 200:
            # 400 is the usual answer to bad credentials, 404 to a wrong environment URL
            logger.error("mpesa_token_rejected", status_code=resp.status_code, environment=self.environment)
            raise GatewayAuthError(
                f"M-Pesa auth failed: gateway returned {resp.status_code}",
                **self._error_context(body),
            )

        token = body.get("access_token") if isinstance(body, dict) else None
        if not token:
            raise GatewayAuthError("M-Pesa auth failed: no access token in response", **self._error_context(body))

        try:
            ttl = int(body.get("expires_in", DEFAULT_TOKEN_TTL))
        except (TypeError, ValueError):
            ttl = DEFAULT_TOKEN_TTL
        self._token = token
        self._token_expires_at = self._clock() + max(ttl - TOKEN_EXPIRY_MARGIN, 0)
        logger.info("mpesa_token_received", expires_in=ttl)
        return token

    async def initiate_push(self, phone: str, amount: int, account_reference: str, description: str) -> PushResult:
        token = await self.get_token()

        timestamp = self.timestamp()
        request_data = {
            "BusinessShortCode": self.settings.mpesa_short_code,
            "Password": self.password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": amount,
            "PartyA": phone,
            "PartyB": self.settings.mpesa_short_code,
            "PhoneNumber": phone,
            "CallBackURL": self.settings.mpesa_callback_url,
            "AccountReference": account_reference,
            "TransactionDesc": description,
        }

        logger.info("mpesa_stk_push_sending", amount=amount, phone=phone, environment=self.environment)
        try:
            with gateway_request_duration_seconds.labels(operation="stk_push").time():
                resp = await self.client.post(
                    f"{self.base_url}{STK_PUSH_PATH}",
                    json=request_data,
                    headers={"Authorization": f"Bearer {token}"},
                    timeout=self.settings.gateway_request_timeout,
                )
        except httpx.HTTPError as e:
            logger.error("mpesa_stk_push_no_response", error=str(e))
            raise UpstreamError(
                "No response from M-Pesa API. Please try again.",
                **self._error_context(str(e)),
            )

        body = _json_body(resp)
        if resp.status_code >= 400:
            if resp.status_code == 401:
                self.invalidate_token()
            message = "Payment request failed"
            if isinstance(body, dict):
                if body.get("errorMessage"):
                    message = body["errorMessage"]
                elif body.get("errorCode"):
                    message = f"M-Pesa error: {body['errorCode']}"
            logger.error("mpesa_stk_push_rejected", status_code=resp.status_code, gateway_response=body)
            raise UpstreamError(message, status_code=resp.status_code, **self._error_context(body))

        if not isinstance(body, dict) or str(body.get("ResponseCode")) != "0" or not body.get("CheckoutRequestID"):
            description_text = "Payment request was not accepted"
            if isinstance(body, dict):
                description_text = body.get("ResponseDescription") or body.get("errorMessage") or description_text
            logger.error("mpesa_stk_push_not_accepted", gateway_response=body)
            raise UpstreamError(description_text, status_code=502, **self._error_context(body))

        logger.info(
            "mpesa_stk_push_accepted",
            checkout_request_id=body["CheckoutRequestID"],
            merchant_request_id=body.get("MerchantRequestID"),
        )
        return PushResult(
            checkout_request_id=body["CheckoutRequestID"],
            merchant_request_id=body.get("MerchantRequestID"),
            response_description=body.get("ResponseDescription", ""),
            raw=body,
        )

    async def aclose(self) -> None:
        await self.client.aclose()
