from decimal import Decimal
from pydantic import BaseModel


class BalanceResponse(BaseModel):
    employee_id: str
    remaining_days: Decimal
    used_days: Decimal
    updated_at: str
