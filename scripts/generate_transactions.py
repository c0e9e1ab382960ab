"""Generate demo purchases against the configured database."""
import argparse
import asyncio
import logging
import random
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from billpay.config import get_settings
from billpay.core.catalog import DEFAULT_PRODUCTS
from billpay.core.lifecycle import TransactionLifecycle
from billpay.dependencies import InfrastructureContainer
from billpay.schemas.catalog import Product

logger = logging.getLogger(__name__)

# Mobile prefixes for PULSA products, 11-digit meter numbers for PLN
PHONE_PREFIXES = ["0812", "0813", "0857", "0878", "0896"]


def customer_number_for(product: Product) -> str:
    if product.category_code == "PLN":
        return "".join(random.choices("0123456789", k=11))
    return random.choice(PHONE_PREFIXES) + "".join(random.choices("0123456789", k=8))


async def generate(lifecycle: TransactionLifecycle, count: int, reject_pct: float) -> None:
    for i in range(count):
        product = random.choice(DEFAULT_PRODUCTS)
        txn = await lifecycle.create_purchase(
            product.code,
            customer_number_for(product),
            product.price,
            product_name=product.name,
            category_code=product.category_code,
            product_type=product.type,
            actor="generator",
        )
        label = "[PENDING]"
        if random.random() < reject_pct:
            txn = await lifecycle.reject(txn.transaction_code, actor="generator")
            label = "[REJECTED]"
        print(
            f"{label} [{i + 1}/{count}] {txn.transaction_code}: "
            f"{txn.product_name} Rp{txn.total_price:,} -> {txn.customer_number}"
        )


async def main() -> None:
    parser = argparse.ArgumentParser(description="Generate demo purchases")
    parser.add_argument("--count", "-c", type=int, default=20, help="Number of purchases")
    parser.add_argument(
        "--reject",
        type=float,
        default=0.1,
        help="Share of purchases to reject straight away (0.0-1.0)",
    )
    args = parser.parse_args()

    container = InfrastructureContainer.from_settings(get_settings())
    try:
        await container.verify()
        await generate(container.lifecycle(), args.count, args.reject)
    finally:
        await container.close()


if __name__ == "__main__":
    asyncio.run(main())
