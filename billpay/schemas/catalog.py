"""Pydantic schemas for the product catalog."""

from pydantic import BaseModel

from billpay.models.transaction import ProductType


class Category(BaseModel):
    code: str
    name: str
    icon: str = ""
    description: str | None = None


class Product(BaseModel):
    code: str
    name: str
    category_code: str
    operator: str | None = None
    price: int
    description: str | None = None
    type: ProductType = ProductType.PRABAYAR
    is_active: bool = True
