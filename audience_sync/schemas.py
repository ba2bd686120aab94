"""
Request / response schemas shared by the API layer and the customer store
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

Gender = Literal["male", "female", "unknown"]
SortColumn = Literal[
    "created_at_source",
    "last_order_at",
    "first_name",
    "email",
    "total_spent",
    "orders_count",
]


class CustomerFilter(BaseModel):
    """Customer list filter; every set field narrows the result (AND)"""

    gender_inferred: Optional[List[Gender]] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    last_order_from: Optional[datetime] = None
    last_order_to: Optional[datetime] = None
    city: Optional[List[str]] = None
    province: Optional[List[str]] = None
    region: Optional[str] = None
    tag: Optional[str] = None
    min_total_spent: Optional[float] = Field(None, ge=0)
    max_total_spent: Optional[float] = Field(None, ge=0)
    min_orders_count: Optional[int] = Field(None, ge=0)
    max_orders_count: Optional[int] = Field(None, ge=0)

    page: int = Field(1, ge=1)
    page_size: int = Field(25, ge=1, le=100)
    sort_by: SortColumn = "created_at_source"
    sort_order: Literal["asc", "desc"] = "desc"


class CustomerExportFilter(CustomerFilter):
    """Same predicates as CustomerFilter, one large page"""

    page: int = 1
    page_size: int = Field(10000, ge=1, le=10000)


class Pagination(BaseModel):
    page: int
    page_size: int
    total_count: int
    total_pages: int


class SyncRequest(BaseModel):
    start_date: Optional[str] = None
