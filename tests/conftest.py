# Ensure the repository root is on sys.path so `receipt_printer` can be imported in tests.

import sys
from pathlib import Path
from typing import Any, Dict

import pytest


def _ensure_repo_root_on_syspath() -> None:
    # This file lives at: <repo_root>/tests/conftest.py
    # We want to add <repo_root> to sys.path (if not already present).
    here = Path(__file__).resolve()
    repo_root = here.parent.parent
    repo_str = str(repo_root)
    if repo_str not in sys.path:
        sys.path.insert(0, repo_str)


_ensure_repo_root_on_syspath()


@pytest.fixture
def receipt_data() -> Dict[str, Any]:
    """Two curries and a naan with tax and a zero delivery fee."""
    return {
        "business": {
            "name": "Cottage Tandoori",
            "address": "12 High Street, Leeds",
            "phone": "0113 496 0000",
            "vat_id": "GB123456789",
        },
        "order": {
            "receipt_number": "A-1042",
            "date": "2024-03-05T19:30:00",
            "customer_name": "Sam",
            "order_type": "Delivery",
        },
        "items": [
            {"name": "Lamb Curry", "quantity": 2, "unit_price": "6.50"},
            {"name": "Naan", "quantity": 1, "unit_price": "2.00"},
        ],
        "totals": {"subtotal": "15.00", "tax": "1.70", "delivery_fee": "0", "total": "16.70"},
        "footer_message": "Thank you for your order!",
    }
