from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from medbill.config import Fees
from medbill.errors import ValidationError
from medbill.models import ZERO, BillingSummary, LineItem, coerce_money

logger = logging.getLogger("medbill.billing")


def compute_summary(line_items: Iterable[LineItem], code_count: int, fees: Optional[Fees] = None) -> BillingSummary:
    """
    total = sum(item costs) + consultation fee + per-code fee * code_count

    Items costing 0.00 are counted and listed in invalid_items, never dropped.
    """
    fees = fees or Fees()
    items = list(line_items)
    code_count = max(0, int(code_count))

    per_item_total = sum((item.cost for item in items), ZERO)
    coding_fee = fees.per_code * code_count
    grand_total = per_item_total + fees.consultation + coding_fee

    invalid = [item.name or f"Item {idx}" for idx, item in enumerate(items, start=1) if not item.is_billable]

    return BillingSummary(
        per_item_total=coerce_money(per_item_total),
        consultation_fee=coerce_money(fees.consultation),
        coding_fee=coerce_money(coding_fee),
        grand_total=coerce_money(grand_total),
        code_count=code_count,
        item_count=len(items),
        invalid_items=invalid,
    )


def ensure_billable(summary: BillingSummary) -> BillingSummary:
    if summary.item_count == 0:
        raise ValidationError("At least one medication is required")
    if summary.invalid_items:
        raise ValidationError(f"Medications missing costs: {', '.join(summary.invalid_items)}")
    return summary


def check_client_total(client_total: Any, summary: BillingSummary) -> bool:
    """
    The browser may send its own total. It is informational only; the
    recomputed summary is what gets billed. Returns True when they agree.
    """
    if client_total is None or client_total == "":
        return True
    sent = coerce_money(client_total)
    if sent != summary.grand_total:
        logger.warning(
            "billing.total_mismatch client_total=%s server_total=%s (using server total)",
            sent,
            summary.grand_total,
        )
        return False
    return True
