"""
Ventanilla Única - Tax Constants
================================
Hardcoded Colombian monthly provisioning rates and categories.

CRITICAL: These are the ONLY source of truth for provision calculations.
The LLM must reference these values - never hallucinate rates.

These are simplified provisioning rates for separating cash, not the
official DIAN tax tables.
"""

from enum import Enum
from typing import Dict

# =============================================================================
# PROFILE ENUMS
# =============================================================================

class PersonaType(str, Enum):
    NATURAL = "natural"
    JURIDICA = "juridica"
    UNKNOWN = "unknown"


class ActivityType(str, Enum):
    SERVICES = "services"
    COMMERCE = "commerce"
    MIXED = "mixed"
    UNKNOWN = "unknown"


class Regimen(str, Enum):
    SIMPLE = "simple"
    ORDINARIO = "ordinario"
    UNKNOWN = "unknown"


class VatResponsible(str, Enum):
    YES = "yes"
    NO = "no"
    UNKNOWN = "unknown"


class ProvisionStyle(str, Enum):
    CONSERVATIVE = "conservative"
    BALANCED = "balanced"
    AGGRESSIVE = "aggressive"


class RiskLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class DocumentCategory(str, Enum):
    TAX = "tax"
    DEDUCTIONS = "deductions"
    HIRING = "hiring"
    FINANCE = "finance"


# =============================================================================
# MONTHLY PROVISION RATES
# Base income-tax ("renta") provision rate applied to income minus expenses
# =============================================================================

RENTA_RATE_BY_REGIMEN: Dict[Regimen, float] = {
    Regimen.SIMPLE: 0.05,
    Regimen.ORDINARIO: 0.10,
    Regimen.UNKNOWN: 0.08,
}

# Multiplier on the renta provision chosen by the user
PROVISION_FACTOR_BY_STYLE: Dict[ProvisionStyle, float] = {
    ProvisionStyle.CONSERVATIVE: 1.25,
    ProvisionStyle.BALANCED: 1.00,
    ProvisionStyle.AGGRESSIVE: 0.75,
}

# Cash left after provisions below this share of income is "medium" risk
MEDIUM_RISK_CASH_RATIO = 0.15

IVA_METHOD = "vat_collected_as_proxy"
RENTA_METHOD = "simplified_monthly_provision"

IVA_NOTE = (
    "Estimación simplificada: IVA cobrado del mes como provisión. "
    "No aplica descuentos por retenciones sin clasificar."
)
RENTA_NOTE = (
    "Estimación simplificada para separar caja; no es cálculo definitivo de impuesto."
)
WITHHOLDINGS_NOTE = (
    "Retenciones pueden corresponder a renta/IVA/ICA; se usan para ajuste "
    "posterior cuando se clasifiquen."
)


# =============================================================================
# INPUT BOUNDS
# =============================================================================

MIN_YEAR = 1900
MAX_YEAR = 3000

DEFAULT_HISTORY_MONTHS = 6
MAX_HISTORY_MONTHS = 24

# Only the most recent rows are considered for the history chart
HISTORY_FETCH_LIMIT = 24


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def get_renta_rate(regimen: Regimen) -> float:
    """Base renta provision rate for a regimen."""
    return RENTA_RATE_BY_REGIMEN[Regimen(regimen)]


def get_provision_factor(style: ProvisionStyle) -> float:
    """Multiplier applied to the renta provision for a provision style."""
    return PROVISION_FACTOR_BY_STYLE[ProvisionStyle(style)]


def period_number(year: int, month: int) -> int:
    """Map a calendar month to a monotonically increasing integer."""
    return year * 12 + month


# =============================================================================
# EXPORT CONSTANTS FOR LLM PROMPTS
# =============================================================================

def get_all_constants_for_llm() -> str:
    """
    Generate a summary of the provisioning constants for inclusion
    in LLM prompts. This keeps the assistant from inventing rates.
    """
    output = []
    output.append("=" * 60)
    output.append("REFERENCIA DE PROVISIÓN MENSUAL (SIMPLIFICADA)")
    output.append("Usa SOLO estos valores - no estimes ni adivines.")
    output.append("=" * 60)

    output.append("\n--- TASA BASE DE RENTA POR RÉGIMEN ---")
    for regimen, rate in RENTA_RATE_BY_REGIMEN.items():
        output.append(f"{regimen.value}: {rate * 100:.0f}%")

    output.append("\n--- FACTOR POR ESTILO DE PROVISIÓN ---")
    for style, factor in PROVISION_FACTOR_BY_STYLE.items():
        output.append(f"{style.value}: x{factor:.2f}")

    output.append("\n--- SEMÁFORO DE RIESGO ---")
    output.append("high: caja después de provisión negativa")
    output.append(
        f"medium: caja después de provisión menor al {MEDIUM_RISK_CASH_RATIO * 100:.0f}% de los ingresos"
    )
    output.append("low: en otro caso")

    return "\n".join(output)
