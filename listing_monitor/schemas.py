from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import List, Optional
from datetime import datetime

class Item(BaseModel):
    item_id: str
    title: str = ""
    price: Optional[float] = None
    currency: Optional[str] = None
    condition: Optional[str] = None
    seller: Optional[str] = None
    link: Optional[str] = None
    image: Optional[str] = None

class SearchResult(BaseModel):
    items: List[Item] = Field(default_factory=list)
    total: int = 0

class Snapshot(BaseModel):
    items: List[Item] = Field(default_factory=list)
    total: int = 0
    timestamp: datetime

class UserCreate(BaseModel):
    email: str = Field(..., max_length=255)
    max_active_monitors: Optional[int] = Field(None, ge=0)
    max_api_calls_per_hour: Optional[int] = Field(None, ge=0)
    max_notifications_per_day: Optional[int] = Field(None, ge=0)

class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    email: str
    last_login_at: Optional[datetime] = None
    max_active_monitors: int
    max_api_calls_per_hour: int
    max_notifications_per_day: int

def _check_price_range(model):
    if model.min_price is not None and model.max_price is not None and model.min_price > model.max_price:
        raise ValueError("min_price must not exceed max_price")
    return model

class MonitorFilters(BaseModel):
    keywords: Optional[List[str]] = Field(None, min_length=1)
    excluded_keywords: Optional[List[str]] = None
    min_price: Optional[float] = Field(None, ge=0)
    max_price: Optional[float] = Field(None, ge=0)
    conditions: Optional[List[str]] = None
    sellers: Optional[List[str]] = None

    @field_validator("keywords", "excluded_keywords", "conditions", "sellers")
    @classmethod
    def not_null(cls, v):
        # omit a field to leave it unchanged; null is not a value for it
        if v is None:
            raise ValueError("may not be null")
        return v

    @model_validator(mode="after")
    def price_range(self):
        return _check_price_range(self)

class MonitorCreate(BaseModel):
    user_id: int
    keywords: List[str] = Field(..., min_length=1)
    excluded_keywords: List[str] = Field(default_factory=list)
    min_price: Optional[float] = Field(None, ge=0)
    max_price: Optional[float] = Field(None, ge=0)
    conditions: List[str] = Field(default_factory=list)
    sellers: List[str] = Field(default_factory=list)
    interval_ms: Optional[int] = None

    @model_validator(mode="after")
    def price_range(self):
        return _check_price_range(self)

class IntervalUpdate(BaseModel):
    interval_ms: int

class MonitorOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    user_id: int
    keywords: List[str]
    excluded_keywords: List[str]
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    conditions: List[str]
    sellers: List[str]
    status: str
    interval_ms: int
    next_check_at: Optional[datetime] = None
    last_check_time: Optional[datetime] = None
    last_result_count: int
    api_call_count: int
    notification_count: int

class SweepReport(BaseModel):
    disabled_monitors: int = 0
    orphans_removed: int = 0
    schedules_restored: int = 0
    expired_snapshots: int = 0
    errors: int = 0
