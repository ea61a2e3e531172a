"""
Ventanilla Única - Data Models
==============================
Pydantic models for the fiscal profile, monthly inputs and provision results.

These models serve as the contract between:
- Input validation (forms and JSON payloads)
- Provision calculation engine
- Storage layer
- Frontend display and the assistant's context
"""

from datetime import date, datetime, timezone
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, computed_field
import uuid

from tax_constants import (
    ActivityType,
    DocumentCategory,
    MAX_YEAR,
    MIN_YEAR,
    PersonaType,
    ProvisionStyle,
    Regimen,
    RiskLevel,
    VatResponsible,
    period_number,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# FISCAL PROFILE
# =============================================================================

class TaxProfile(BaseModel):
    """
    A user's fiscal configuration. One per user identity.

    Only `natural` persona profiles can be calculated today; the other
    categories are stored so the user does not have to re-enter them later.
    """
    model_config = ConfigDict(frozen=True)

    persona_type: PersonaType = PersonaType.UNKNOWN
    activity_type: ActivityType = ActivityType.UNKNOWN
    regimen: Regimen = Regimen.UNKNOWN
    vat_responsible: VatResponsible = VatResponsible.UNKNOWN
    provision_style: ProvisionStyle = ProvisionStyle.BALANCED

    # Informational only, never used in calculations
    municipality: Optional[str] = None
    start_date: Optional[date] = None


class StoredTaxProfile(TaxProfile):
    """Tax profile as persisted for a user."""
    user_id: str
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# MONTHLY INPUTS
# =============================================================================

class MonthlyInput(BaseModel):
    """One month of reported activity, amounts in COP."""
    model_config = ConfigDict(frozen=True)

    year: int = Field(ge=MIN_YEAR, le=MAX_YEAR)
    month: int = Field(ge=1, le=12)

    income_cop: float = Field(default=0.0, ge=0, allow_inf_nan=False)
    deductible_expenses_cop: float = Field(default=0.0, ge=0, allow_inf_nan=False)
    withholdings_cop: float = Field(default=0.0, ge=0, allow_inf_nan=False)
    vat_collected_cop: float = Field(default=0.0, ge=0, allow_inf_nan=False)

    notes: Optional[str] = None

    @property
    def period(self) -> int:
        return period_number(self.year, self.month)


class StoredMonthlyInput(MonthlyInput):
    """Monthly input as persisted, keyed by (user_id, year, month)."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    created_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# PROVISION RESULTS
# =============================================================================

class ProvisionBreakdown(BaseModel):
    """
    Result of the monthly provision calculation.

    Transient - the calculator never persists it.
    """
    model_config = ConfigDict(frozen=True)

    # VAT (IVA)
    iva_provision: float
    iva_method: str
    iva_note: str

    # Income tax (renta)
    base: float = Field(ge=0, description="Income minus deductible expenses, floored at 0")
    renta_provision: float
    renta_method: str
    renta_rate_base: float
    provision_style: ProvisionStyle
    provision_factor: float
    renta_note: str

    withholdings_note: str

    # The key numbers
    total_provision: float
    cash_after_provision: float = Field(description="Negative = cash shortfall")
    risk_level: RiskLevel


class HistoryItem(BaseModel):
    """Lightweight per-month row for the trend chart."""
    year: int
    month: int
    income_cop: float
    deductible_expenses_cop: float
    total_provision: float
    cash_after_provision: float
    risk_level: RiskLevel

    @computed_field
    @property
    def label(self) -> str:
        """Chart label, e.g. '2026-03'."""
        return f"{self.year:04d}-{self.month:02d}"


# =============================================================================
# CONVERSATIONS
# =============================================================================

class Conversation(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: Optional[str] = Field(default=None, description="None for anonymous demo chats")
    created_at: datetime = Field(default_factory=utc_now)


class ChatMessage(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    conversation_id: str
    role: str = Field(pattern="^(user|assistant)$")
    content: str
    user_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# DOCUMENTS
# =============================================================================

class DocumentRecord(BaseModel):
    """Metadata for an uploaded PDF. The file itself lives in blob storage."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    title: str
    category: DocumentCategory
    storage_path: str
    created_at: datetime = Field(default_factory=utc_now)
