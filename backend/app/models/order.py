from pydantic import BaseModel, Field
from typing import Optional

from app.models_sqlalchemy.models import OrderStatus


class ShipmentScanRequest(BaseModel):
    scanned_value: str = ""


class ShipmentScanResponse(BaseModel):
    success: bool
    message: str
    order_id: Optional[str] = None
    status: Optional[OrderStatus] = None


class OrderStatusChangeRequest(BaseModel):
    status: OrderStatus


class OrderSyncRequest(BaseModel):
    hours: Optional[int] = Field(None, gt=0, le=24 * 30)
