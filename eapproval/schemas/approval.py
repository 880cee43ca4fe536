from datetime import date
from decimal import Decimal
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator

from eapproval.services.balance_service import DayType


# ---------- document payloads (tagged on document_type) ----------


class VacationPayload(BaseModel):
    document_type: Literal["vacation"] = "vacation"
    start_date: date
    end_date: date
    day_types: List[DayType] = Field(..., min_length=1, max_length=366)
    reason: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode="before")
    @classmethod
    def _accept_aliases(cls, data):
        # "zero-cost" is a synonym for an official day
        if isinstance(data, dict) and isinstance(data.get("day_types"), list):
            data = dict(data)
            data["day_types"] = [
                "official" if str(t).lower() in ("zero-cost", "zero_cost") else t
                for t in data["day_types"]
            ]
        return data

    @model_validator(mode="after")
    def _check_span(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        span = (self.end_date - self.start_date).days + 1
        if span != len(self.day_types):
            raise ValueError(f"day_types must list one entry per day ({span} expected)")
        return self


class PurchasePayload(BaseModel):
    document_type: Literal["purchase", "sales"] = "purchase"
    customer_name: str = Field(..., min_length=1, max_length=200)
    product: str = Field(..., min_length=1, max_length=200)
    serial_number: Optional[str] = Field(None, max_length=100)
    end_user: Optional[str] = Field(None, max_length=200)
    contract_date: Optional[date] = None
    delivery_date: Optional[date] = None
    amount: Optional[Decimal] = Field(None, ge=0)
    currency: str = Field("KRW", min_length=3, max_length=3)
    special_notes: Optional[str] = Field(None, max_length=2000)


class OutsideWorkPayload(BaseModel):
    document_type: Literal["outside_work"] = "outside_work"
    destination: str = Field(..., min_length=1, max_length=200)
    implement_date: date
    usage_period: Optional[str] = Field(None, max_length=100)
    contact: Optional[str] = Field(None, max_length=100)
    is_vehicle_use: bool = False
    is_personal_vehicle: bool = False
    vehicle_model: Optional[str] = Field(None, max_length=100)


class OutsideWorkReportPayload(BaseModel):
    document_type: Literal["outside_work_report"] = "outside_work_report"
    application_id: Optional[str] = None
    visited_at: date
    summary: str = Field(..., min_length=1, max_length=5000)
    mileage_km: Optional[Decimal] = Field(None, ge=0)


class InternalReportPayload(BaseModel):
    document_type: Literal["internal_report"] = "internal_report"
    content: str = Field(..., min_length=1, max_length=20000)


DocumentPayload = Annotated[
    Union[
        VacationPayload,
        PurchasePayload,
        OutsideWorkPayload,
        OutsideWorkReportPayload,
        InternalReportPayload,
    ],
    Field(discriminator="document_type"),
]


# ---------- requests ----------


class ApproverChainIn(BaseModel):
    first: List[str] = Field(default_factory=list)
    second: List[str] = Field(default_factory=list)
    third: List[str] = Field(default_factory=list)
    shared: List[str] = Field(default_factory=list)


class ApprovalCreate(BaseModel):
    title: Optional[str] = Field(None, max_length=255)
    approvers: Optional[Union[List[str], ApproverChainIn]] = None
    payload: DocumentPayload

    @property
    def document_type(self) -> str:
        return self.payload.document_type


class ApprovalUpdate(BaseModel):
    """Requester-side edit of a request nobody has decided on yet."""

    title: Optional[str] = Field(None, min_length=1, max_length=255)
    payload: Optional[DocumentPayload] = None
    expected_status: Optional[
        Literal["stage1_pending", "stage2_pending", "stage3_pending", "approved", "rejected"]
    ] = None

    @model_validator(mode="after")
    def _require_change(self):
        if self.title is None and self.payload is None:
            raise ValueError("Provide a title or a payload to change")
        return self


class DecisionBody(BaseModel):
    decision: Literal["approve", "reject"]
    comment: Optional[str] = Field(None, max_length=500)
    expected_status: Optional[
        Literal["stage1_pending", "stage2_pending", "stage3_pending", "approved", "rejected"]
    ] = None


class ApprovalActionBody(BaseModel):
    comment: Optional[str] = Field(None, max_length=500)
    expected_status: Optional[str] = None


# ---------- responses ----------


class ApproverChainOut(BaseModel):
    first: List[str] = []
    second: List[str] = []
    third: List[str] = []
    shared: List[str] = []


class HistoryEntryResponse(BaseModel):
    approver_id: str
    stage: str
    decision: str
    comment: Optional[str] = None
    decided_at: str


class ApprovalResponse(BaseModel):
    id: str
    document_type: str
    requester_id: str
    title: str
    payload: dict
    approvers: ApproverChainOut
    status: str
    status_label: str
    history: List[HistoryEntryResponse] = []
    created_at: str
    updated_at: str
    decided_at: Optional[str] = None


class ApprovalCreatedResponse(BaseModel):
    id: str
    status: str


class DecisionResponse(BaseModel):
    id: str
    previous_status: str
    status: str
    history_length: int
    deducted_days: Optional[Decimal] = None


class CountResponse(BaseModel):
    count: int
