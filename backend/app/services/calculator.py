"""Line-item calculator and invoice totals resolver.

Pure functions, no DB access.  The result always *replaces* the stored
subtotal/discount/tax/total on an invoice; nothing is merged.

    amount          = quantity × rate                 (per line)
    subtotal        = Σ amount
    discount_amount = discount                        (type "amount")
                    = subtotal × discount / 100       (type "percentage")
                      clamped to subtotal so taxable ≥ 0
    taxable_amount  = subtotal − discount_amount
    tax_amount      = taxable_amount × tax_rate / 100
    total           = taxable_amount + tax_amount

Every monetary result is quantized to cents (ROUND_HALF_UP).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Mapping

from app.middleware.exceptions import InvoiceValidationError
from app.models.invoice import DISCOUNT_TYPES
from app.utils.money import ZERO, to_decimal, to_money

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class LineItemInput:
    description: str
    quantity: Decimal
    rate: Decimal


@dataclass(frozen=True)
class ComputedLineItem:
    description: str
    quantity: Decimal
    rate: Decimal
    amount: Decimal


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal
    tax_amount: Decimal
    total: Decimal


@dataclass(frozen=True)
class PricedInvoice:
    line_items: list[ComputedLineItem]
    discount_value: Decimal
    discount_type: str
    tax_rate: Decimal
    totals: InvoiceTotals


def _coerce_item(item) -> LineItemInput:
    """Accept a LineItemInput, a pydantic model, a mapping, or a 3-tuple."""
    if isinstance(item, LineItemInput):
        return item
    if isinstance(item, Mapping):
        return LineItemInput(
            description=item.get("description"),
            quantity=item.get("quantity"),
            rate=item.get("rate"),
        )
    if isinstance(item, (tuple, list)) and len(item) == 3:
        return LineItemInput(*item)
    return LineItemInput(
        description=getattr(item, "description", None),
        quantity=getattr(item, "quantity", None),
        rate=getattr(item, "rate", None),
    )


def compute_line_items(
    items: Iterable,
) -> tuple[list[ComputedLineItem], Decimal]:
    """Validate each line and return (computed lines, subtotal).

    Raises InvoiceValidationError naming the 1-based line number of the
    first offending line.
    """
    computed: list[ComputedLineItem] = []
    for index, raw in enumerate(items, start=1):
        item = _coerce_item(raw)

        description = (item.description or "").strip() if isinstance(item.description, str) else ""
        if not description:
            raise InvoiceValidationError(
                f"Line item {index}: Description is required",
                details={"line": index, "field": "description"},
            )
        try:
            quantity = to_decimal(item.quantity)
        except ValueError:
            quantity = None
        if quantity is None or quantity < 1:
            raise InvoiceValidationError(
                f"Line item {index}: Quantity must be at least 1",
                details={"line": index, "field": "quantity"},
            )
        try:
            rate = to_decimal(item.rate)
        except ValueError:
            rate = None
        if rate is None or rate < 0:
            raise InvoiceValidationError(
                f"Line item {index}: Rate cannot be negative",
                details={"line": index, "field": "rate"},
            )

        computed.append(ComputedLineItem(
            description=description,
            quantity=quantity,
            rate=rate,
            amount=to_money(quantity * rate),
        ))

    if not computed:
        raise InvoiceValidationError("At least one line item is required")

    subtotal = to_money(sum((line.amount for line in computed), ZERO))
    return computed, subtotal


def resolve_totals(
    subtotal: Decimal,
    discount=0,
    discount_type: str = "amount",
    tax_rate=18,
) -> InvoiceTotals:
    """Apply discount then tax to a subtotal."""
    if discount_type not in DISCOUNT_TYPES:
        raise InvoiceValidationError(
            f"Invalid discount type '{discount_type}' (expected one of {', '.join(DISCOUNT_TYPES)})"
        )
    try:
        discount = to_decimal(discount if discount is not None else 0)
        tax_rate = to_decimal(tax_rate if tax_rate is not None else 0)
    except ValueError as exc:
        raise InvoiceValidationError(str(exc)) from exc

    if discount < 0:
        raise InvoiceValidationError("Discount cannot be negative")
    if discount_type == "percentage" and discount > HUNDRED:
        raise InvoiceValidationError("Discount percentage cannot exceed 100%")
    if tax_rate < 0 or tax_rate > HUNDRED:
        raise InvoiceValidationError("Tax rate must be between 0 and 100")

    subtotal = to_money(subtotal)
    if discount_type == "percentage":
        discount_amount = to_money(subtotal * discount / HUNDRED)
    else:
        discount_amount = to_money(discount)
    # A flat discount larger than the subtotal zeroes the taxable amount
    discount_amount = min(discount_amount, subtotal)

    taxable = subtotal - discount_amount
    tax_amount = to_money(taxable * tax_rate / HUNDRED)
    return InvoiceTotals(
        subtotal=subtotal,
        discount_amount=discount_amount,
        taxable_amount=taxable,
        tax_amount=tax_amount,
        total=to_money(taxable + tax_amount),
    )


def price_invoice(
    items: Iterable,
    discount=0,
    discount_type: str = "amount",
    tax_rate=18,
) -> PricedInvoice:
    """Run both stages; validation fails before anything is returned."""
    lines, subtotal = compute_line_items(items)
    totals = resolve_totals(subtotal, discount, discount_type, tax_rate)
    return PricedInvoice(
        line_items=lines,
        discount_value=to_money(discount or 0),
        discount_type=discount_type,
        tax_rate=to_decimal(tax_rate if tax_rate is not None else 0),
        totals=totals,
    )
