from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional

from app.models_sqlalchemy.models import TaskType


class TaskFrequency(BaseModel):
    weekly_day: Optional[int] = Field(None, ge=0, le=6)
    monthly_day: Optional[int] = Field(None, ge=1, le=31)


class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    type: TaskType
    assigned_to: List[str] = Field(..., min_length=1)
    frequency: TaskFrequency = Field(default_factory=TaskFrequency)
    due_date: datetime


class TaskComplete(BaseModel):
    attachment_url: str = Field(..., min_length=1)
