"""Product catalog providers.

``StaticCatalog`` serves the seed categories and products shipped with the
storefront. ``GatewayCatalog`` asks the provider and caches product lists
in Redis; when the gateway is unreachable it either fails or, with
``catalog_fallback_to_static`` enabled, serves the static catalog.
"""

import json
import logging

from redis.asyncio import Redis
from redis.exceptions import RedisError

from billpay.adapters.indotel_gateway import IndotelGateway
from billpay.exceptions import GatewayError
from billpay.models.transaction import ProductType
from billpay.schemas.catalog import Category, Product

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES: tuple[Category, ...] = (
    Category(code="PULSA", name="Pulsa", icon="mobile-alt", description="Semua Operator"),
    Category(code="DATA", name="Paket Data", icon="wifi", description="Internet"),
    Category(code="PLN", name="PLN", icon="bolt", description="Token Listrik"),
    Category(code="PDAM", name="PDAM", icon="tint", description="Air"),
    Category(code="BPJS", name="BPJS", icon="heart", description="Kesehatan"),
    Category(code="GAME", name="Voucher Game", icon="gamepad", description="Gaming"),
)


def _prepaid(code: str, name: str, category: str, operator: str, price: int, desc: str) -> Product:
    return Product(
        code=code,
        name=name,
        category_code=category,
        operator=operator,
        price=price,
        description=desc,
        type=ProductType.PRABAYAR,
    )


DEFAULT_PRODUCTS: tuple[Product, ...] = (
    _prepaid("T1", "THREE 1.000", "PULSA", "THREE", 2000, "Pulsa THREE Rp 1.000"),
    _prepaid("T2", "THREE 5.000", "PULSA", "THREE", 5500, "Pulsa THREE Rp 5.000"),
    _prepaid("T3", "THREE 10.000", "PULSA", "THREE", 10500, "Pulsa THREE Rp 10.000"),
    _prepaid("XL1", "XL 5.000", "PULSA", "XL", 5200, "Pulsa XL Rp 5.000"),
    _prepaid("TSEL1", "Telkomsel 5.000", "PULSA", "Telkomsel", 5300, "Pulsa Telkomsel Rp 5.000"),
    _prepaid("PLN20", "PLN Token 20k", "PLN", "PLN", 20500, "Token PLN Rp 20.000"),
    _prepaid("PLN50", "PLN Token 50k", "PLN", "PLN", 50500, "Token PLN Rp 50.000"),
)


def _filter_products(
    products: list[Product], category_code: str, product_type: str | None
) -> list[Product]:
    return [
        p
        for p in products
        if p.is_active
        and (not category_code or p.category_code == category_code)
        and (product_type is None or p.type == product_type)
    ]


class StaticCatalog:
    """In-process catalog seeded with the default categories and products."""

    def __init__(
        self,
        categories: tuple[Category, ...] | list[Category] = DEFAULT_CATEGORIES,
        products: tuple[Product, ...] | list[Product] = DEFAULT_PRODUCTS,
    ):
        self._categories = list(categories)
        self._products = {p.code: p for p in products}

    async def list_categories(self) -> list[Category]:
        return list(self._categories)

    async def list_products(
        self, category_code: str = "", product_type: str | None = None
    ) -> list[Product]:
        return _filter_products(list(self._products.values()), category_code, product_type)

    async def get_product(self, code: str) -> Product | None:
        product = self._products.get(code)
        return product if product and product.is_active else None


class GatewayCatalog:
    """
    Catalog read from the Indotel gateway.

    Product lists are cached per category in Redis for ``cache_ttl`` seconds.
    Key format: catalog:products:{category_code or "*"}
    """

    KEY_PREFIX = "catalog"

    def __init__(
        self,
        gateway: IndotelGateway,
        redis: Redis,
        cache_ttl: int = 300,
        fallback: StaticCatalog | None = None,
    ):
        self.gateway = gateway
        self.redis = redis
        self.cache_ttl = cache_ttl
        self.fallback = fallback

    def _make_key(self, kind: str, scope: str = "*") -> str:
        return f"{self.KEY_PREFIX}:{kind}:{scope or '*'}"

    async def _cached(self, key: str) -> list[dict] | None:
        try:
            cached = await self.redis.get(key)
        except RedisError as e:
            logger.warning("Redis unavailable for catalog cache (%s): %s", key, e)
            return None
        if not cached:
            return None
        try:
            return json.loads(cached)
        except json.JSONDecodeError:
            return None

    async def _store(self, key: str, items: list[Category] | list[Product]) -> None:
        payload = json.dumps([item.model_dump(mode="json") for item in items])
        try:
            await self.redis.setex(key, self.cache_ttl, payload)
        except RedisError as e:
            logger.warning("Could not cache catalog entry %s: %s", key, e)

    async def list_categories(self) -> list[Category]:
        key = self._make_key("categories")
        cached = await self._cached(key)
        if cached is not None:
            return [Category.model_validate(item) for item in cached]
        try:
            categories = await self.gateway.list_categories()
        except GatewayError as e:
            if self.fallback is None:
                raise
            logger.warning("Gateway catalog unavailable, serving static categories: %s", e)
            return await self.fallback.list_categories()
        await self._store(key, categories)
        return categories

    async def list_products(
        self, category_code: str = "", product_type: str | None = None
    ) -> list[Product]:
        key = self._make_key("products", category_code)
        cached = await self._cached(key)
        if cached is not None:
            products = [Product.model_validate(item) for item in cached]
        else:
            try:
                products = await self.gateway.list_products(category_code)
            except GatewayError as e:
                if self.fallback is None:
                    raise
                logger.warning("Gateway catalog unavailable, serving static products: %s", e)
                return await self.fallback.list_products(category_code, product_type)
            await self._store(key, products)
        return _filter_products(products, category_code, product_type)

    async def get_product(self, code: str) -> Product | None:
        """Look *code* up in the cached list and refresh its price from the gateway.

        The listed price is kept when the price check fails or reports no amount.
        """
        listed = next((p for p in await self.list_products() if p.code == code), None)
        if listed is None:
            return None
        try:
            result = await self.gateway.check_price(code)
        except GatewayError as e:
            logger.warning("Price check for %s failed, using listed price: %s", code, e)
            return listed
        if not result.succeeded or result.amount is None:
            return listed
        if result.amount != listed.price:
            logger.info("Price of %s changed from %d to %d", code, listed.price, result.amount)
        return listed.model_copy(update={"price": result.amount})
