"""
Pydantic request/response models for the API.
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional


# ============== Collections ==============

class CollectionReplaceRequest(BaseModel):
    """Full new contents of a source collection."""
    records: List[Dict[str, Any]]


class CollectionAppendRequest(BaseModel):
    record: Dict[str, Any]


# ============== Allocation ==============

class RequestLineModel(BaseModel):
    item_code: str = ""
    item_name: str = ""
    qty: float
    closed: bool = False


class RequestBatchModel(BaseModel):
    """One indent: reference number (carrying the serial) plus lines."""
    ref: str
    lines: List[RequestLineModel] = Field(default_factory=list)
    date: str = ""
    requested_by: str = ""
    order_ref: str = ""


class AllocateRequest(BaseModel):
    """
    Ad-hoc allocation. Without supply the current closing stock is used;
    with supply, quantities are keyed by item code or name.
    """
    batches: List[RequestBatchModel]
    supply: Optional[Dict[str, float]] = None
    incoming: Optional[Dict[str, float]] = None
