"""Pydantic request/response schemas for the FinVision service API."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, EmailStr, Field

TransactionType = Literal["income", "expense"]
StorageProvider = Literal["local", "gdrive"]
DocumentStatus = Literal["PENDING", "PROCESSING", "COMPLETED", "FAILED"]

# -- Extraction ---------------------------------------------------------------


class LineItem(BaseModel):
    description: str
    quantity: float | None = None
    price: float | None = None


class ExtractionResult(BaseModel):
    """Structured fields pulled out of one receipt or invoice.

    ``type`` must be present in the model output but may be null or any
    string; only the literal ``"income"`` counts as income downstream.
    """

    date: str = Field(..., min_length=1)
    vendor: str = Field(..., min_length=1)
    total_amount: float
    tax_amount: float = 0.0
    category: str = Field(..., min_length=1)
    currency: str = Field(..., min_length=1)
    type: str | None
    items: list[LineItem] = Field(default_factory=list)


class AnalyzeRequest(BaseModel):
    base64_data: str = Field(..., min_length=1, description="Raw base64 document bytes")
    mime_type: str = Field("", max_length=200, description="Declared MIME type")


# -- Records ------------------------------------------------------------------


class DocumentRecord(BaseModel):
    id: str
    name: str
    upload_date: str
    status: DocumentStatus = "COMPLETED"
    file_size: int = Field(0, ge=0)


class TransactionRecord(BaseModel):
    id: str
    date: str
    vendor: str
    amount: float
    tax: float = 0.0
    category: str
    currency: str
    type: TransactionType
    document_id: str = "manual"
    document_data: str | None = None
    mime_type: str | None = None


class TransactionUpdate(BaseModel):
    date: str | None = None
    vendor: str | None = None
    amount: float | None = None
    tax: float | None = None
    category: str | None = None
    currency: str | None = None
    type: TransactionType | None = None


class TransactionSummary(BaseModel):
    """Transaction as listed in tables; document bytes are fetched separately."""

    id: str
    date: str
    vendor: str
    amount: float
    tax: float
    category: str
    currency: str
    type: TransactionType
    document_id: str
    mime_type: str | None = None
    has_document: bool = False


class TransactionDocument(BaseModel):
    transaction_id: str
    document_id: str
    document_data: str
    mime_type: str | None = None


class DeleteResponse(BaseModel):
    deleted: bool
    id: str


# -- Auth / profile -----------------------------------------------------------


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=200)
    name: str = Field(..., min_length=1, max_length=200)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=200)


class UserProfile(BaseModel):
    id: str
    name: str
    email: str
    gdrive_folder_id: str = ""
    storage_provider: StorageProvider = "local"


class AuthResponse(BaseModel):
    token: str
    user: UserProfile


class ProfileUpdate(BaseModel):
    storage_provider: StorageProvider | None = None
    gdrive_folder_id: str | None = Field(None, max_length=500)


# -- Analytics ----------------------------------------------------------------


class DashboardStats(BaseModel):
    total_revenue: float
    total_expenses: float
    net_profit: float
    burn_rate: int
    revenue_change: str
    expenses_change: str
    profit_change: str
    is_revenue_positive: bool
    is_expenses_positive: bool
    is_profit_positive: bool


class MonthlyTotals(BaseModel):
    name: str
    full_name: str
    income: float
    expense: float


class CategoryTotal(BaseModel):
    name: str
    value: float


class StatsResponse(BaseModel):
    stats: DashboardStats
    monthly: list[MonthlyTotals]
    categories: list[CategoryTotal]


# -- Upload queue -------------------------------------------------------------


class QueueJobView(BaseModel):
    id: str
    filename: str
    file_size: int
    mime_type: str
    status: Literal["pending", "analyzing", "saving", "completed", "failed"]
    progress: int
    error: str | None = None
    submitted_at: datetime


class QueueStats(BaseModel):
    total: int
    completed: int
    failed: int
    remaining: int


class QueueSnapshot(BaseModel):
    jobs: list[QueueJobView]
    stats: QueueStats
    policy: Literal["income", "expense", "auto"]
    is_processing: bool
    batch_complete: bool
    overall_progress: int


class PolicyUpdate(BaseModel):
    policy: Literal["income", "expense", "auto"]


# -- Health -------------------------------------------------------------------


class HealthResponse(BaseModel):
    status: str
    error: str | None = None
