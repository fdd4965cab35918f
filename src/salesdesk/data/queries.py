"""
Typed read operations against the ERP store.

Each function performs one logical read and returns plain JSON-ready data.  Not-found is reported as
``{"found": False}`` rather than raised, and numeric columns that PostgREST returns as text
(``numeric``/``decimal``) are converted to numbers before leaving this module.
"""

import logging
from decimal import (
    ROUND_HALF_UP,
    Decimal,
    InvalidOperation,
)
from typing import (
    Any,
    Dict,
    List,
    Optional,
)

from salesdesk.config import settings
from salesdesk.core.schema import BusinessProfile
from salesdesk.data.postgrest import DataStore

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def to_number(value: Any) -> int | float | None:
    """Normalize a numeric column (int, float or decimal text) to a Python number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        logger.warning("Non-numeric value in numeric column: %r", value)
        return None
    if number == number.to_integral_value():
        return int(number)
    return float(number)


def _money(value: Decimal) -> float:
    return float(value.quantize(_CENT, rounding=ROUND_HALF_UP))


def _like_pattern(text: str) -> str:
    # '*' is the PostgREST wildcard; keep the user's text literal.
    return "ilike.*" + text.replace("*", "").strip() + "*"


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------
async def search_products_by_name(store: DataStore, name: str, limit: int = 10) -> List[Dict[str, Any]]:
    """Find products whose name contains *name* (case-insensitive), at most *limit* rows."""
    rows = await store.select(
        "Product",
        "id, name, price, stock, categoryId",
        filters={"name": _like_pattern(name)},
        limit=limit,
    )
    return [
        {
            "id": row["id"],
            "name": row["name"],
            "price": to_number(row.get("price")),
            "stock": row.get("stock") or 0,
            "category_id": row.get("categoryId"),
        }
        for row in rows[:limit]
    ]


async def get_product_stock(store: DataStore, product_id: int) -> Dict[str, Any]:
    """Return the name and stock of one product."""
    rows = await store.select(
        "Product", "id, name, stock", filters={"id": f"eq.{product_id}"}, limit=1
    )
    if not rows:
        return {"found": False}
    row = rows[0]
    return {"found": True, "id": row["id"], "name": row["name"], "stock": row.get("stock") or 0}


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------
async def get_order_by_number(store: DataStore, order_number: int) -> Dict[str, Any]:
    """
    Fetch an order by its human-facing number, with line items and totals.

    Line subtotals are ``price * quantity``; the order subtotal is their sum, tax is
    ``settings.TAX_RATE`` of the subtotal and total is subtotal plus tax.  Amounts are rounded to
    cents.  ``total_amount`` is the value stored on the order row, which may lag behind the items.
    """
    orders = await store.select(
        "Order",
        "id, orderNumber, personId, employedId, totalAmount, status",
        filters={"orderNumber": f"eq.{order_number}"},
        limit=1,
    )
    if not orders:
        return {"found": False}
    order = orders[0]

    items = await store.select(
        "OrderItems",
        "id, productId, quantity, product:Product(id, name, price)",
        filters={"orderId": f"eq.{order['id']}"},
        order="id.asc",
    )

    subtotal = Decimal(0)
    mapped_items = []
    for item in items:
        product = item.get("product")
        price = to_number(product.get("price")) if product else None
        quantity = item.get("quantity") or 0
        line_total = Decimal(str(price)) * quantity if price is not None else Decimal(0)
        subtotal += line_total
        mapped_items.append(
            {
                "id": item["id"],
                "product_id": item.get("productId"),
                "quantity": quantity,
                "product": (
                    {"id": product["id"], "name": product["name"], "price": price}
                    if product
                    else None
                ),
                "subtotal": _money(line_total),
            }
        )

    tax = subtotal * Decimal(str(settings.TAX_RATE))
    return {
        "found": True,
        "order": {
            "id": order["id"],
            "order_number": order["orderNumber"],
            "person_id": order.get("personId"),
            "employed_id": order.get("employedId"),
            "total_amount": to_number(order.get("totalAmount")),
            "status": order.get("status"),
            "items": mapped_items,
            "subtotal": _money(subtotal),
            "tax": _money(tax),
            "total": _money(subtotal + tax),
        },
    }


# ---------------------------------------------------------------------------
# People
# ---------------------------------------------------------------------------
async def get_customer_by_email(store: DataStore, email: str) -> Dict[str, Any]:
    """Fetch a person record by exact email."""
    rows = await store.select(
        "Person",
        "id, firstName, lastName, email, phoneNumber",
        filters={"email": f"eq.{email}"},
        limit=1,
    )
    if not rows:
        return {"found": False}
    row = rows[0]
    return {
        "found": True,
        "person": {
            "id": row["id"],
            "first_name": row.get("firstName"),
            "last_name": row.get("lastName"),
            "email": row.get("email"),
            "phone_number": row.get("phoneNumber"),
        },
    }


# ---------------------------------------------------------------------------
# Company profile
# ---------------------------------------------------------------------------
async def get_business_profile(store: DataStore) -> Optional[BusinessProfile]:
    """Return the single CompanySettings row, or *None* when none has been created."""
    rows = await store.select(
        "CompanySettings",
        "id, name, description, personality, salesMessaging",
        order="id.asc",
        limit=1,
    )
    if not rows:
        return None
    row = rows[0]
    return BusinessProfile(
        id=row.get("id"),
        name=row.get("name") or "",
        description=row.get("description") or "",
        personality=row.get("personality") or "",
        sales_messaging=row.get("salesMessaging") or "",
    )
