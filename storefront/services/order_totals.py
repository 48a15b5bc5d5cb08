"""Server-side order total calculation."""

from decimal import Decimal
from typing import Any, Iterable

from storefront.core.money import parse_money, parse_quantity, quantize_money


def line_quantity(item: dict[str, Any]) -> Decimal:
    """Quantity of a line item.

    A missing quantity means one unit; a value that cannot be parsed counts
    as zero. Parsed values are kept as they are, fractions included.
    """
    raw = item.get("quantity")
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return Decimal(1)
    quantity = parse_quantity(raw)
    return quantity if quantity is not None else Decimal(0)


def line_total(item: dict[str, Any]) -> Decimal:
    """Price times quantity of one line item, before rounding."""
    price = parse_money(item.get("price")) or Decimal(0)
    return price * line_quantity(item)


def calculate_total(items: Iterable[dict[str, Any]], currency: str | None) -> Decimal:
    """Sum price x quantity over line items.

    Unparseable prices or quantities count as zero. The sum is rounded
    half-even to the currency's minor unit.

    Args:
        items: Line item dicts with ``price`` and ``quantity`` keys.
        currency: ISO currency code of the order.

    Returns:
        Decimal: The trusted order total.
    """
    total = sum((line_total(item) for item in items or [] if isinstance(item, dict)), Decimal(0))
    return quantize_money(total, currency)


def trusted_total(
    items: list[dict[str, Any]] | None,
    fallback: Any,
    currency: str | None,
) -> Decimal | None:
    """Pick the total to persist.

    Line items always win. A client-supplied total is only used when the
    order carries no items (externally computed orders).

    Returns:
        Decimal | None: Total to store, or None if nothing usable was given.
    """
    if items:
        return calculate_total(items, currency)

    advisory = parse_money(fallback)
    if advisory is None:
        return None
    return quantize_money(advisory, currency)


def totals_differ(stored: Any, computed: Decimal, currency: str | None) -> bool:
    """Check whether a stored total drifted from the recomputed one."""
    current = parse_money(stored)
    if current is None:
        return True
    return quantize_money(current, currency) != computed
