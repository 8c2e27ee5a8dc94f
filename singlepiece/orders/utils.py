import re
from typing import Any, Dict, Iterable, List, Optional

from singlepiece.common.constants import PAYMENT_METHODS
from singlepiece.common.custom_exceptions import ValidationError
from singlepiece.config.settings import config_settings
from singlepiece.schema.full_schema import Product

UPI_TXN_RE = re.compile(r"^[A-Z0-9]{8,20}$", re.IGNORECASE)
BANK_REF_RE = re.compile(r"^[A-Z0-9]{6,30}$", re.IGNORECASE)


def compute_order_totals(products: Iterable[Product], shipping_fee: Optional[int] = None,
                         tax_rate: Optional[float] = None) -> Dict[str, int]:
    shipping_fee = config_settings.SHIPPING_FEE if shipping_fee is None else shipping_fee
    tax_rate = config_settings.TAX_RATE if tax_rate is None else tax_rate

    subtotal = sum(int(p.price) for p in products)
    tax = int(round(subtotal * tax_rate))
    shipping = shipping_fee if subtotal > 0 else 0
    return {
        "subtotal": subtotal,
        "tax": tax,
        "shipping": shipping,
        "total": subtotal + tax + shipping,
    }


def validate_payment_proof(method: str, proof: Dict[str, Any]) -> Dict[str, Any]:
    """Check the reference format for `method` and return the proof as stored (reference upper-cased)."""
    if method not in PAYMENT_METHODS:
        raise ValidationError("Unsupported payment method", method=method)
    proof = dict(proof or {})

    if method == "upi":
        txn = str(proof.get("upi_transaction_id") or "").strip()
        if not txn:
            raise ValidationError("UPI transaction ID is required")
        if not UPI_TXN_RE.match(txn):
            raise ValidationError("Invalid UPI transaction ID format. Should be 8-20 alphanumeric characters")
        proof["upi_transaction_id"] = txn.upper()
    else:
        ref = str(proof.get("bank_reference") or "").strip()
        if not ref:
            raise ValidationError("Bank reference number is required")
        if not BANK_REF_RE.match(ref):
            raise ValidationError("Invalid bank reference format. Should be 6-30 alphanumeric characters")
        proof["bank_reference"] = ref.upper()

    return {k: v for k, v in proof.items() if v not in (None, "")}


def next_steps(method: str) -> List[str]:
    if method == "upi":
        return [
            f"Make payment to our UPI ID: {config_settings.UPI_ID}",
            "Enter the transaction ID in the form",
            "Our team will verify within 1-2 hours",
            "You will receive a confirmation email",
        ]
    if method == "bank_transfer":
        return [
            "Transfer the amount to our bank account",
            "Enter the reference number in the form",
            "Our team will verify within 2-4 hours",
            "You will receive a confirmation email",
        ]
    return []


def payment_instructions(total: int) -> Dict[str, Any]:
    return {
        "upiId": config_settings.UPI_ID,
        "amount": total,
        "instructions": f"Pay Rs.{total} to {config_settings.UPI_ID} and submit the transaction ID",
    }
