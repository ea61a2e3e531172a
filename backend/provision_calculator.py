"""
Ventanilla Única - Provision Calculator
=======================================
Core monthly tax provisioning engine.

This module performs all provision math locally - the LLM is NOT used for
calculations. It is pure: no I/O, no logging, no hidden state. The same
(profile, monthly input) pair always yields the same breakdown.

Consumers:
1. The estimate endpoint (current month)
2. The history endpoint (trailing window of months)
3. The chat endpoint (context block for the assistant)
"""

from datetime import date
from typing import Iterable, List, Optional

from tax_constants import (
    IVA_METHOD,
    IVA_NOTE,
    MAX_HISTORY_MONTHS,
    MEDIUM_RISK_CASH_RATIO,
    PersonaType,
    RENTA_METHOD,
    RENTA_NOTE,
    RiskLevel,
    VatResponsible,
    WITHHOLDINGS_NOTE,
    get_provision_factor,
    get_renta_rate,
    period_number,
)
from models import HistoryItem, MonthlyInput, ProvisionBreakdown, TaxProfile


class UnsupportedProfileError(Exception):
    """The profile cannot be calculated (only natural persons are supported)."""

    reason = "unsupported_profile"

    def __init__(self, message: str = "only natural-person profiles are supported in this version"):
        super().__init__(message)
        self.message = message


# =============================================================================
# RISK CLASSIFIER
# =============================================================================

def classify_risk(cash_after_provision: float, income_cop: float) -> RiskLevel:
    """
    Map residual cash to a traffic-light risk level. First match wins:
    negative cash is high, cash under 15% of income is medium, else low.
    """
    if cash_after_provision < 0:
        return RiskLevel.HIGH
    if cash_after_provision < MEDIUM_RISK_CASH_RATIO * income_cop:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


# =============================================================================
# PROVISION CALCULATION ENGINE
# =============================================================================

class ProvisionCalculator:
    """
    Monthly provision engine for Colombian independent workers.
    All rates come from tax_constants - NO LLM involvement.
    """

    def calculate(self, profile: TaxProfile, monthly_input: MonthlyInput) -> ProvisionBreakdown:
        """
        Calculate how much cash to set aside for taxes this month.

        Both records are assumed to be validated already.

        Raises:
            UnsupportedProfileError: persona type is not natural
        """
        if profile.persona_type != PersonaType.NATURAL:
            raise UnsupportedProfileError()

        income = monthly_input.income_cop
        expenses = monthly_input.deductible_expenses_cop

        # VAT collected is not the business's income; earmark all of it
        if profile.vat_responsible == VatResponsible.YES:
            iva_provision = monthly_input.vat_collected_cop
        else:
            iva_provision = 0.0

        base = max(income - expenses, 0.0)
        rate = get_renta_rate(profile.regimen)
        factor = get_provision_factor(profile.provision_style)
        renta_provision = base * rate * factor

        total_provision = renta_provision + iva_provision
        cash_after_provision = income - expenses - total_provision

        return ProvisionBreakdown(
            iva_provision=iva_provision,
            iva_method=IVA_METHOD,
            iva_note=IVA_NOTE,
            base=base,
            renta_provision=renta_provision,
            renta_method=RENTA_METHOD,
            renta_rate_base=rate,
            provision_style=profile.provision_style,
            provision_factor=factor,
            renta_note=RENTA_NOTE,
            withholdings_note=WITHHOLDINGS_NOTE,
            total_provision=total_provision,
            cash_after_provision=cash_after_provision,
            risk_level=classify_risk(cash_after_provision, income),
        )


_default_calculator = ProvisionCalculator()


def compute_provision(profile: TaxProfile, monthly_input: MonthlyInput) -> ProvisionBreakdown:
    """Module-level entry point shared by the estimate, history and chat surfaces."""
    return _default_calculator.calculate(profile, monthly_input)


# =============================================================================
# HISTORY AGGREGATOR
# =============================================================================

class HistoryAggregator:
    """
    Applies the calculator over a trailing window of months for charting.

    Months with no input are simply absent from the series. Months that
    cannot be calculated (unsupported profile) are dropped rather than
    failing the whole series.
    """

    def __init__(self, calculator: Optional[ProvisionCalculator] = None):
        self.calculator = calculator or _default_calculator

    def build_series(
        self,
        profile: TaxProfile,
        records: Iterable[MonthlyInput],
        window_months: int,
        today: date,
    ) -> List[HistoryItem]:
        """
        Args:
            profile: The user's tax profile
            records: Monthly inputs in any order
            window_months: Trailing window size (1-24) ending at today's month
            today: Reference date for the current period

        Returns:
            History rows in ascending (year, month) order
        """
        if not 1 <= window_months <= MAX_HISTORY_MONTHS:
            raise ValueError(f"window_months must be between 1 and {MAX_HISTORY_MONTHS}")

        min_period = period_number(today.year, today.month) - (window_months - 1)
        in_window = sorted(
            (r for r in records if period_number(r.year, r.month) >= min_period),
            key=lambda r: (r.year, r.month),
        )

        items = []
        for record in in_window:
            try:
                breakdown = self.calculator.calculate(profile, record)
            except UnsupportedProfileError:
                continue

            items.append(HistoryItem(
                year=record.year,
                month=record.month,
                income_cop=record.income_cop,
                deductible_expenses_cop=record.deductible_expenses_cop,
                total_provision=breakdown.total_provision,
                cash_after_provision=breakdown.cash_after_provision,
                risk_level=breakdown.risk_level,
            ))

        return items
