from datetime import date
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict


class PaymentMethod(str, Enum):
    BANK_TRANSFER = "Bank Transfer"
    CASH = "Cash"
    MPESA = "M-Pesa"


class SupplierPayment(BaseModel):
    """An append-only ledger entry against a supplier invoice."""
    model_config = ConfigDict(frozen=True)

    id: str
    invoice_id: str
    payment_date: date
    amount: Decimal
    method: PaymentMethod = PaymentMethod.BANK_TRANSFER
