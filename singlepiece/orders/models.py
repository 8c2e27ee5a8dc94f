from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field


class PaymentProofIn(BaseModel):
    paymentMethod: Literal["upi", "bank_transfer"]
    upiTransactionId: Optional[str] = Field(default=None, max_length=64)
    bankReference: Optional[str] = Field(default=None, max_length=64)
    payerName: Optional[str] = Field(default=None, max_length=120)
    paymentDate: Optional[str] = Field(default=None, max_length=40)

    def proof(self) -> Dict[str, Any]:
        return {
            "upi_transaction_id": self.upiTransactionId,
            "bank_reference": self.bankReference,
            "payer_name": self.payerName,
            "payment_date": self.paymentDate,
        }


class AdminDecisionIn(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=1000)
    reason: Optional[str] = Field(default=None, max_length=1000)
