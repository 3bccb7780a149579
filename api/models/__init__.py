"""
Pydantic models for payables API requests.
"""
from datetime import date
from typing import List, Optional, Union

from pydantic import BaseModel


class ItemIn(BaseModel):
    product_id: str
    product_name: Optional[str] = None
    quantity: int
    unit_cost: Union[int, float, str]


class PurchaseOrderCreate(BaseModel):
    supplier_id: str
    items: List[ItemIn]
    expected_date: date
    status: str = "Draft"   # Draft | Sent


class ReceiveRequest(BaseModel):
    received_date: Optional[date] = None


class PaymentCreate(BaseModel):
    amount: Union[int, float, str]
    payment_date: Optional[date] = None
    method: str = "Bank Transfer"   # Bank Transfer | Cash | M-Pesa
