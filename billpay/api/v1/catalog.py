"""Catalog API endpoints (categories and products)."""

from fastapi import APIRouter, HTTPException, Query, Response, status

from billpay.dependencies import Catalog
from billpay.models.transaction import ProductType
from billpay.schemas.catalog import Category, Product

router = APIRouter()


@router.get("/categories", response_model=list[Category])
async def list_categories(catalog: Catalog, response: Response) -> list[Category]:
    response.headers["Cache-Control"] = "public, max-age=60"
    return await catalog.list_categories()


@router.get("/products", response_model=list[Product])
async def list_products(
    catalog: Catalog,
    response: Response,
    category: str = Query("", max_length=32),
    type: ProductType | None = Query(None),
) -> list[Product]:
    """
    List active products.

    - **category**: category code (e.g. ``PULSA``, ``PLN``); empty for all
    - **type**: ``PRABAYAR`` or ``PASCABAYAR``
    """
    response.headers["Cache-Control"] = "public, max-age=60"
    return await catalog.list_products(category, type.value if type else None)


@router.get("/products/{code}", response_model=Product)
async def get_product(code: str, catalog: Catalog) -> Product:
    product = await catalog.get_product(code)
    if product is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Product '{code}' not found",
        )
    return product
