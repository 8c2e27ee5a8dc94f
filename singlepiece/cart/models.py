from pydantic import BaseModel, Field


class CartItemIn(BaseModel):
    item_key: str = Field(min_length=1, max_length=64)
