from typing import Any, Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field


class CustomerDetailsIn(BaseModel):
    fullName: str = Field(min_length=1, max_length=120)
    email: EmailStr
    phoneNumber: str = Field(min_length=6, max_length=20)
    addressLine1: str = Field(min_length=1, max_length=255)
    addressLine2: Optional[str] = Field(default=None, max_length=255)
    city: str = Field(min_length=1, max_length=80)
    state: str = Field(min_length=1, max_length=80)
    pincode: str = Field(min_length=4, max_length=12)

    def customer_details(self) -> Dict[str, Any]:
        return self.model_dump(include=set(CustomerDetailsIn.model_fields), exclude_none=True)


class BuyNowIn(CustomerDetailsIn):
    productId: str = Field(min_length=1, max_length=64)
    paymentMethod: Optional[str] = None


class CartCheckoutIn(CustomerDetailsIn):
    # explicit list of item refs; the server cart is used when omitted
    productIds: Optional[List[str]] = None
    paymentMethod: Optional[str] = None
