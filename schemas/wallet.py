from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import List, Optional

class WalletInfo(BaseModel):
    user_id: str
    balance: int

class TransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    amount: int
    type: str
    description: Optional[str] = None
    order_id: Optional[int] = None
    created_at: Optional[datetime] = None

class WalletResponse(BaseModel):
    balance: int
    transactions: List[TransactionResponse]
