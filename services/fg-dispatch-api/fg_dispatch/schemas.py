from __future__ import annotations

import datetime as dt
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class LoginRequest(BaseModel):
    username: str
    password: str


class UserProfile(BaseModel):
    id: int
    username: str
    name: str
    role: str
    active: bool
    created_at: dt.datetime


class ChallanCreateRequest(BaseModel):
    # Presence and ranges are checked by the challan service so the caller
    # gets the same messages the dispatch screens show.
    dispatch_type: Optional[str] = None
    receiver_type: Optional[str] = None
    receiver_name: Optional[str] = None
    receiver_details: Optional[str] = None
    product_name: Optional[str] = None
    issue_type: Optional[str] = None
    quantity: Optional[int] = None
    carton_quantity: Optional[int] = None
    piece_quantity: Optional[int] = None
    date: Optional[dt.date] = None
    remarks: Optional[str] = None


class ChallanSummary(BaseModel):
    dc_no: str
    status: str
    issue_type: str
    carton_quantity: int
    piece_quantity: int
    total_quantity: int


class ChallanCreateResponse(BaseModel):
    message: str
    data: ChallanSummary


class ChallanStatusUpdate(BaseModel):
    status: Optional[str] = None


class ChallanResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    dc_no: str
    dispatch_type: str
    receiver_type: str
    receiver_name: Optional[str] = None
    receiver_details: Optional[str] = None
    product_name: str
    issue_type: str
    quantity: int
    carton_quantity: int
    piece_quantity: int
    units_per_carton: int
    available_cartons: int
    available_pieces: int
    broken_carton_pieces: int
    date: dt.date
    remarks: Optional[str] = None
    created_by: str
    status: str
    created_at: dt.datetime
    updated_at: dt.datetime
    completed_date: Optional[dt.datetime] = None


class StockEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_name: str
    item_code: Optional[str] = None
    hsn_code: Optional[str] = None
    available_cartons: int
    available_pieces: int
    broken_carton_pieces: int
    units_per_carton: int
    total_available: int
    alert_threshold: int
    last_updated: dt.datetime


class StockAlert(BaseModel):
    id: int
    product_name: str
    item_code: Optional[str] = None
    current_stock: int
    alert_threshold: int


class StockReportRow(BaseModel):
    id: int
    product_name: str
    item_code: Optional[str] = None
    hsn_code: Optional[str] = None
    total_outward: int
    available_stock: int
    available_cartons: int
    available_pieces: int
    broken_carton_pieces: int
    units_per_carton: int
    alert_threshold: int
    last_updated: dt.datetime


class StockSettingsUpdate(BaseModel):
    alert_threshold: Optional[int] = Field(default=None, ge=0)
    hsn_code: Optional[str] = Field(default=None, max_length=32)


class ProductMappingUpsert(BaseModel):
    product_name: str = Field(min_length=1, max_length=255)
    units_per_carton: int = Field(ge=1)
    item_code: Optional[str] = Field(default=None, max_length=64)
    hsn_code: Optional[str] = Field(default=None, max_length=32)
    alert_threshold: Optional[int] = Field(default=None, ge=0)
    opening_cartons: int = Field(default=0, ge=0)
    opening_pieces: int = Field(default=0, ge=0)


class ProductMappingImportRequest(BaseModel):
    items: list[ProductMappingUpsert]


class ProductMappingImportResult(BaseModel):
    imported: int
    stock_created: int


class ProductMappingEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_name: str
    units_per_carton: int
    updated_at: dt.datetime


class AuditEntry(BaseModel):
    id: int
    entity: str
    entity_id: str
    action: str
    payload_json: dict
    user_id: Optional[int] = None
    ts: dt.datetime
