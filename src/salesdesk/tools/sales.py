"""Read-only sales tools advertised to the chat model."""

from typing import (
    Any,
    Dict,
    List,
)

from pydantic import (
    BaseModel,
    EmailStr,
    Field,
)

from salesdesk.data import queries
from salesdesk.data.postgrest import DataStore
from salesdesk.tools import register_tool


# ---------------------------------------------------------------------------
# Argument schemas
# ---------------------------------------------------------------------------
class SearchProductsArgs(BaseModel):
    name: str = Field(..., min_length=1, description="Text to look for in the product name")
    limit: int = Field(10, ge=1, le=50, description="Maximum number of results")


class ProductStockArgs(BaseModel):
    product_id: int = Field(..., gt=0, description="Product ID")


class OrderLookupArgs(BaseModel):
    order_number: int = Field(..., gt=0, description="Human-facing order number")


class CustomerLookupArgs(BaseModel):
    email: EmailStr = Field(..., description="Exact customer email")


class NoArgs(BaseModel):
    pass  # pylint: disable=unnecessary-pass


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------
@register_tool(
    "search_products_by_name",
    "Search products by name (partial match, case-insensitive).",
    SearchProductsArgs,
)
async def search_products_by_name(store: DataStore, args: SearchProductsArgs) -> List[Dict[str, Any]]:
    return await queries.search_products_by_name(store, args.name, args.limit)


@register_tool(
    "get_product_stock",
    "Get the stock and name of a product by its ID.",
    ProductStockArgs,
)
async def get_product_stock(store: DataStore, args: ProductStockArgs) -> Dict[str, Any]:
    return await queries.get_product_stock(store, args.product_id)


@register_tool(
    "get_order_by_number",
    "Get an order by its number, with line items, subtotal, tax and total.",
    OrderLookupArgs,
)
async def get_order_by_number(store: DataStore, args: OrderLookupArgs) -> Dict[str, Any]:
    return await queries.get_order_by_number(store, args.order_number)


@register_tool(
    "get_customer_by_email",
    "Get a person (customer) by exact email.",
    CustomerLookupArgs,
)
async def get_customer_by_email(store: DataStore, args: CustomerLookupArgs) -> Dict[str, Any]:
    return await queries.get_customer_by_email(store, args.email)


@register_tool(
    "get_company_settings",
    "Get the company settings (name, description, personality, sales messaging).",
    NoArgs,
)
async def get_company_settings(store: DataStore, args: NoArgs) -> Dict[str, Any]:
    # pylint: disable=unused-argument
    profile = await queries.get_business_profile(store)
    if profile is None:
        return {"found": False}
    return {"found": True, "settings": profile.model_dump()}
