"""HTTP client for the Indotel billing gateway.

Wire contract (one of several the provider has been called with; see
DESIGN.md): ``POST {base_url}/{endpoint}`` with a JSON body carrying the
merchant id (``mmid``), our idempotency key (``ref_1``), the product code
and the customer number, authenticated by an ``rqid: {mmid}:{password}``
header. Replies go through :func:`normalize_reply`.

The client performs no retries. Settlement is assumed to be idempotent on
``ref_1`` at the provider; that assumption is not verified here.
"""

from __future__ import annotations

import time
from typing import Any

import httpx

from billpay.adapters.indotel_replies import normalize_reply, parse_amount
from billpay.config import Settings
from billpay.exceptions import GatewayNotConfigured, GatewayRejected, GatewayUnreachable
from billpay.models.transaction import ProductType
from billpay.schemas.catalog import Category, Product
from billpay.schemas.gateway import GatewayBalance, GatewayRequest, GatewayResult
from billpay.utils.logging import get_logger

logger = get_logger(__name__)

# Category-specific parameters forwarded to the provider as-is
FORWARDED_PARAMS = ("periode", "tahun", "nominal")


class IndotelGateway:
    """Stateless translation layer to the Indotel API."""

    def __init__(
        self,
        base_url: str,
        mmid: str,
        password: str,
        *,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.mmid = mmid
        self._password = password
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> "IndotelGateway":
        """Build a gateway from configuration.

        Raises:
            GatewayNotConfigured: If url, mmid or password is missing.
        """
        if not settings.gateway_configured:
            raise GatewayNotConfigured()
        return cls(
            settings.indotel_url,
            settings.indotel_mmid,
            settings.indotel_password,
            timeout=settings.indotel_timeout,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "rqid": f"{self.mmid}:{self._password}",
        }

    def _body(self, request: GatewayRequest) -> dict[str, Any]:
        body: dict[str, Any] = {
            "mmid": self.mmid,
            "ref_1": request.reference_id,
            "product_code": request.product_code,
            "customer_id": request.customer_number,
        }
        for key in FORWARDED_PARAMS:
            value = request.params.get(key)
            if value is not None:
                body[key] = str(value)
        return body

    async def _post(self, endpoint: str, payload: dict[str, Any]) -> GatewayResult:
        url = f"{self.base_url}/{endpoint}"
        started = time.perf_counter()
        try:
            response = await self._client.post(url, json=payload, headers=self._headers())
        except httpx.TimeoutException as exc:
            logger.warning("gateway_timeout", endpoint=endpoint, ref=payload.get("ref_1"))
            raise GatewayUnreachable(f"Indotel {endpoint} request timed out") from exc
        except httpx.TransportError as exc:
            logger.warning("gateway_transport_error", endpoint=endpoint, error=str(exc))
            raise GatewayUnreachable(f"Indotel {endpoint} request failed: {exc}") from exc

        elapsed_ms = round((time.perf_counter() - started) * 1000, 1)
        body = response.text

        if response.status_code >= 500:
            logger.warning(
                "gateway_server_error",
                endpoint=endpoint,
                status_code=response.status_code,
                elapsed_ms=elapsed_ms,
            )
            raise GatewayUnreachable(
                f"Indotel {endpoint} returned HTTP {response.status_code}", raw_payload=body
            )

        try:
            result = normalize_reply(body)
        except GatewayRejected as exc:
            logger.info(
                "gateway_rejected",
                endpoint=endpoint,
                ref=payload.get("ref_1"),
                message=exc.message,
                elapsed_ms=elapsed_ms,
            )
            raise

        if response.status_code >= 400:
            # 4xx without a recognisable failure status, e.g. IP not allow-listed
            message = result.message if result.message else f"HTTP {response.status_code}"
            logger.info("gateway_http_error", endpoint=endpoint, status_code=response.status_code)
            raise GatewayRejected(message, raw_payload=result.raw_payload)

        logger.info(
            "gateway_call",
            endpoint=endpoint,
            ref=payload.get("ref_1"),
            outcome=result.outcome.value,
            provider_ref=result.provider_ref,
            elapsed_ms=elapsed_ms,
        )
        return result

    # ------------------------------------------------------------------
    # Purchase capabilities
    # ------------------------------------------------------------------

    async def inquire(self, request: GatewayRequest) -> GatewayResult:
        """Fetch bill details for a postpaid product; moves no money."""
        return await self._post("inquiry", self._body(request))

    async def topup(self, request: GatewayRequest) -> GatewayResult:
        """Prepaid purchase (credit, data, tokens, vouchers)."""
        return await self._post("topup", self._body(request))

    async def pay_bill(self, request: GatewayRequest) -> GatewayResult:
        """Postpaid bill payment."""
        return await self._post("payment", self._body(request))

    async def settle(self, request: GatewayRequest) -> GatewayResult:
        """Commit the purchase; dispatches on product type."""
        if request.product_type == ProductType.PASCABAYAR:
            return await self.pay_bill(request)
        return await self.topup(request)

    async def check_status(self, provider_ref: str) -> GatewayResult:
        """Poll the provider-side status of an earlier operation."""
        return await self._post(
            "status",
            {"mmid": self.mmid, "ref_2": provider_ref, "transaction_id": provider_ref},
        )

    async def check_balance(self) -> GatewayBalance:
        """Deposit balance of the merchant account.

        Raises:
            GatewayRejected: If the reply carries no readable balance.
        """
        result = await self._post("balance", {"mmid": self.mmid})
        if not result.succeeded or result.amount is None:
            raise GatewayRejected(
                result.message or "Balance not present in gateway reply",
                raw_payload=result.raw_payload,
            )
        return GatewayBalance(balance=result.amount)

    async def check_price(self, product_code: str) -> GatewayResult:
        return await self._post("price", {"mmid": self.mmid, "product_code": product_code})

    # ------------------------------------------------------------------
    # Catalog capabilities
    # ------------------------------------------------------------------

    async def list_categories(self) -> list[Category]:
        result = await self._post("categories", {"mmid": self.mmid})
        return [
            Category(
                code=str(item["code"]),
                name=str(item.get("name") or item["code"]),
                icon=str(item.get("icon") or ""),
                description=item.get("description"),
            )
            for item in _data_items(result)
            if item.get("code")
        ]

    async def list_products(self, category_code: str = "") -> list[Product]:
        result = await self._post("products", {"mmid": self.mmid, "category": category_code})
        products: list[Product] = []
        for item in _data_items(result):
            price = parse_amount(item.get("price"))
            if not item.get("code") or price is None:
                logger.warning("gateway_product_skipped", item=item)
                continue
            product_type = str(item.get("type") or ProductType.PRABAYAR.value).upper()
            products.append(
                Product(
                    code=str(item["code"]),
                    name=str(item.get("name") or item["code"]),
                    category_code=str(item.get("category") or category_code),
                    operator=item.get("operator"),
                    price=price,
                    description=item.get("description"),
                    type=ProductType(product_type)
                    if product_type in ProductType.__members__
                    else ProductType.PRABAYAR,
                )
            )
        return products


def _data_items(result: GatewayResult) -> list[dict[str, Any]]:
    """List entries under ``data`` of a successful JSON reply."""
    payload = result.raw_payload
    if not result.succeeded or not isinstance(payload, dict):
        return []
    data = payload.get("data")
    if not isinstance(data, list):
        return []
    return [item for item in data if isinstance(item, dict)]
