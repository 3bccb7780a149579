import re
from pydantic import BaseModel
from typing import Optional

_NET_TERMS = re.compile(r"^\s*net\s*(\d+)\s*$", re.IGNORECASE)


class Supplier(BaseModel):
    """
    A supplier from the supplier directory.
    credit_terms is free text as entered by staff, e.g. "Net 30" or "On Delivery".
    """
    id: str
    name: str
    contact: Optional[str] = None
    email: Optional[str] = None
    credit_terms: str = "Net 30"

    @property
    def credit_days(self) -> int:
        """Days between receipt and due date ("Net N" -> N, anything else -> 0)."""
        return parse_credit_days(self.credit_terms)


def parse_credit_days(credit_terms: Optional[str]) -> int:
    if not credit_terms:
        return 0
    m = _NET_TERMS.match(credit_terms)
    return int(m.group(1)) if m else 0
