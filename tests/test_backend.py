"""
Ventanilla Única - Test Suite
=============================
Tests for the provision calculator, validation and supporting modules.
"""

import json
import logging
import math
import os
import sys
from datetime import date
from types import SimpleNamespace

import httpx
import openai
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), '..', 'backend'))

from tax_constants import (
    PROVISION_FACTOR_BY_STYLE,
    RENTA_RATE_BY_REGIMEN,
    PersonaType,
    ProvisionStyle,
    Regimen,
    RiskLevel,
    VatResponsible,
    get_all_constants_for_llm,
    period_number,
)
from models import ChatMessage, MonthlyInput, TaxProfile
from validation import (
    ValidationError,
    parse_period_query,
    parse_window_months,
    sanitize_monthly_input,
    sanitize_tax_profile,
)
from provision_calculator import (
    HistoryAggregator,
    ProvisionCalculator,
    UnsupportedProfileError,
    classify_risk,
    compute_provision,
)
from llm_prompts import (
    PROVISION_CONTEXT_HEADER,
    build_conversation_context,
    build_provision_context,
    get_system_prompt,
)
from config import get_settings
from openai_client import AdvisorAIClient, AIErrorKind, classify_openai_error
from rate_limit import InMemoryRateLimitStore, RateLimiter, get_client_ip
from storage import ConversationStore, DocumentStore, MonthlyInputStore, StorageError, TaxProfileStore


def make_profile(**overrides) -> TaxProfile:
    fields = dict(
        persona_type=PersonaType.NATURAL,
        regimen=Regimen.SIMPLE,
        vat_responsible=VatResponsible.YES,
        provision_style=ProvisionStyle.BALANCED,
    )
    fields.update(overrides)
    return TaxProfile(**fields)


def make_input(year=2026, month=10, income=0.0, expenses=0.0, withholdings=0.0, vat=0.0) -> MonthlyInput:
    return MonthlyInput(
        year=year,
        month=month,
        income_cop=income,
        deductible_expenses_cop=expenses,
        withholdings_cop=withholdings,
        vat_collected_cop=vat,
    )


# =============================================================================
# TAX CONSTANTS TESTS
# =============================================================================

class TestTaxConstants:
    """Test provisioning constant values."""

    def test_every_regimen_has_a_rate(self):
        for regimen in Regimen:
            assert regimen in RENTA_RATE_BY_REGIMEN

    def test_every_style_has_a_factor(self):
        for style in ProvisionStyle:
            assert style in PROVISION_FACTOR_BY_STYLE

    def test_rates(self):
        assert RENTA_RATE_BY_REGIMEN[Regimen.SIMPLE] == 0.05
        assert RENTA_RATE_BY_REGIMEN[Regimen.ORDINARIO] == 0.10
        assert RENTA_RATE_BY_REGIMEN[Regimen.UNKNOWN] == 0.08

    def test_factors_ordered_by_caution(self):
        assert (
            PROVISION_FACTOR_BY_STYLE[ProvisionStyle.AGGRESSIVE]
            < PROVISION_FACTOR_BY_STYLE[ProvisionStyle.BALANCED]
            < PROVISION_FACTOR_BY_STYLE[ProvisionStyle.CONSERVATIVE]
        )

    def test_period_number_is_monotonic_across_year_boundary(self):
        assert period_number(2025, 12) + 1 == period_number(2026, 1)

    def test_constants_for_llm_mention_rates(self):
        text = get_all_constants_for_llm()
        assert "simple: 5%" in text
        assert "ordinario: 10%" in text
        assert "conservative: x1.25" in text


# =============================================================================
# VALIDATION TESTS
# =============================================================================

class TestMonthlyInputValidation:
    """Test monthly input sanitization."""

    def test_valid_payload(self):
        result = sanitize_monthly_input({
            "year": 2026,
            "month": 3,
            "income_cop": 10_000_000,
            "deductible_expenses_cop": 2_000_000,
            "withholdings_cop": 0,
            "vat_collected_cop": 500_000,
            "notes": "  factura 12  ",
        })

        assert result.year == 2026
        assert result.month == 3
        assert result.income_cop == 10_000_000
        assert result.notes == "factura 12"

    def test_missing_amounts_default_to_zero(self):
        result = sanitize_monthly_input({"year": 2026, "month": 1})

        assert result.income_cop == 0
        assert result.deductible_expenses_cop == 0
        assert result.withholdings_cop == 0
        assert result.vat_collected_cop == 0
        assert result.notes is None

    def test_numeric_strings_are_converted(self):
        result = sanitize_monthly_input({"year": 2026, "month": 1, "income_cop": " 1500000 "})
        assert result.income_cop == 1_500_000

    def test_blank_notes_normalized_to_none(self):
        result = sanitize_monthly_input({"year": 2026, "month": 1, "notes": "   "})
        assert result.notes is None

    @pytest.mark.parametrize("missing", ["year", "month"])
    def test_year_and_month_required(self, missing):
        payload = {"year": 2026, "month": 1}
        del payload[missing]

        with pytest.raises(ValidationError) as exc:
            sanitize_monthly_input(payload)
        assert exc.value.field == missing

    @pytest.mark.parametrize("year", [1899, 3001, "2026", 2026.5, True])
    def test_invalid_year(self, year):
        with pytest.raises(ValidationError) as exc:
            sanitize_monthly_input({"year": year, "month": 1})
        assert exc.value.field == "year"

    @pytest.mark.parametrize("month", [0, 13, "5", 1.5])
    def test_invalid_month(self, month):
        with pytest.raises(ValidationError) as exc:
            sanitize_monthly_input({"year": 2026, "month": month})
        assert exc.value.field == "month"

    @pytest.mark.parametrize("field", [
        "income_cop", "deductible_expenses_cop", "withholdings_cop", "vat_collected_cop",
    ])
    @pytest.mark.parametrize("value", [-1, "abc", math.inf, "nan", True, [100]])
    def test_invalid_amounts_name_the_field(self, field, value):
        with pytest.raises(ValidationError) as exc:
            sanitize_monthly_input({"year": 2026, "month": 1, field: value})
        assert exc.value.field == field

    def test_empty_payload(self):
        with pytest.raises(ValidationError):
            sanitize_monthly_input(None)

    def test_amount_too_large_for_float(self):
        with pytest.raises(ValidationError) as exc:
            sanitize_monthly_input({"year": 2026, "month": 10, "income_cop": 10 ** 400})
        assert exc.value.field == "income_cop"

    def test_error_serializes_field(self):
        with pytest.raises(ValidationError) as exc:
            sanitize_monthly_input({"year": 2026, "month": 1, "income_cop": -5})
        assert exc.value.to_dict() == {"error": "Invalid income_cop.", "field": "income_cop"}


class TestTaxProfileValidation:
    """Test tax profile sanitization."""

    def test_defaults(self):
        profile = sanitize_tax_profile({})

        assert profile.persona_type == PersonaType.UNKNOWN
        assert profile.regimen == Regimen.UNKNOWN
        assert profile.vat_responsible == VatResponsible.UNKNOWN
        assert profile.provision_style == ProvisionStyle.BALANCED
        assert profile.municipality is None
        assert profile.start_date is None

    def test_full_payload(self):
        profile = sanitize_tax_profile({
            "persona_type": "natural",
            "activity_type": "services",
            "regimen": "simple",
            "vat_responsible": "yes",
            "provision_style": "conservative",
            "municipality": "  Medellín ",
            "start_date": "2024-02-29",
        })

        assert profile.persona_type == PersonaType.NATURAL
        assert profile.provision_style == ProvisionStyle.CONSERVATIVE
        assert profile.municipality == "Medellín"
        assert profile.start_date == date(2024, 2, 29)

    @pytest.mark.parametrize("field", [
        "persona_type", "activity_type", "regimen", "vat_responsible", "provision_style",
    ])
    def test_unknown_enum_value_rejected(self, field):
        with pytest.raises(ValidationError) as exc:
            sanitize_tax_profile({field: "something-else"})
        assert exc.value.field == field

    def test_blank_municipality_is_none(self):
        assert sanitize_tax_profile({"municipality": "   "}).municipality is None

    @pytest.mark.parametrize("value", ["2023-02-29", "2024/01/01", "01-01-2024", "2024-1-1"])
    def test_invalid_start_date(self, value):
        with pytest.raises(ValidationError) as exc:
            sanitize_tax_profile({"start_date": value})
        assert exc.value.field == "start_date"

    def test_blank_start_date_is_none(self):
        assert sanitize_tax_profile({"start_date": "  "}).start_date is None


class TestQueryParsing:
    """Test query parameter parsing."""

    def test_window_defaults_to_six(self):
        assert parse_window_months(None) == 6
        assert parse_window_months("") == 6

    @pytest.mark.parametrize("value,expected", [("1", 1), ("12", 12), ("24", 24)])
    def test_window_in_range(self, value, expected):
        assert parse_window_months(value) == expected

    @pytest.mark.parametrize("value", ["0", "25", "-3", "abc", "6.5"])
    def test_window_out_of_range(self, value):
        with pytest.raises(ValidationError) as exc:
            parse_window_months(value)
        assert exc.value.field == "months"

    def test_period_query(self):
        assert parse_period_query("2026", "10") == (2026, 10)

    def test_period_query_requires_both(self):
        with pytest.raises(ValidationError):
            parse_period_query("2026", None)

    def test_period_query_rejects_bad_month(self):
        with pytest.raises(ValidationError) as exc:
            parse_period_query("2026", "13")
        assert exc.value.field == "month"


# =============================================================================
# PROVISION CALCULATOR TESTS
# =============================================================================

class TestProvisionCalculator:
    """Test the monthly provision engine."""

    @pytest.fixture
    def calculator(self):
        return ProvisionCalculator()

    @pytest.fixture
    def profile(self):
        return make_profile()

    def test_simple_balanced_vat_responsible_scenario(self, calculator, profile):
        """Simple regime, balanced style, VAT responsible."""
        result = calculator.calculate(
            profile, make_input(income=10_000_000, expenses=2_000_000, vat=500_000)
        )

        assert result.base == 8_000_000
        assert result.renta_provision == pytest.approx(400_000)
        assert result.iva_provision == 500_000
        assert result.total_provision == pytest.approx(900_000)
        assert result.cash_after_provision == pytest.approx(7_100_000)
        assert result.risk_level == RiskLevel.LOW

    def test_negative_cash_is_high_risk(self, calculator, profile):
        result = calculator.calculate(
            profile, make_input(income=1_000_000, expenses=100_000, vat=900_000)
        )

        assert result.base == 900_000
        assert result.renta_provision == pytest.approx(45_000)
        assert result.iva_provision == 900_000
        assert result.total_provision == pytest.approx(945_000)
        assert result.cash_after_provision == pytest.approx(-45_000)
        assert result.risk_level == RiskLevel.HIGH

    def test_thin_cash_is_medium_risk(self, calculator, profile):
        # 1,000,000 - 800,000 - 10,000 renta = 190,000 >= 150,000 -> low
        # adding 100,000 of VAT leaves 90,000 < 150,000 -> medium
        result = calculator.calculate(
            profile, make_input(income=1_000_000, expenses=800_000, vat=100_000)
        )

        assert result.cash_after_provision == pytest.approx(90_000)
        assert result.risk_level == RiskLevel.MEDIUM

    def test_detail_fields(self, calculator):
        profile = make_profile(regimen=Regimen.ORDINARIO, provision_style=ProvisionStyle.CONSERVATIVE)
        result = calculator.calculate(profile, make_input(income=1_000_000))

        assert result.renta_rate_base == 0.10
        assert result.provision_factor == 1.25
        assert result.provision_style == ProvisionStyle.CONSERVATIVE
        assert result.iva_method == "vat_collected_as_proxy"
        assert result.renta_method == "simplified_monthly_provision"
        assert result.renta_provision == pytest.approx(125_000)

    def test_unknown_regimen_uses_middle_rate(self, calculator):
        profile = make_profile(regimen=Regimen.UNKNOWN)
        result = calculator.calculate(profile, make_input(income=1_000_000))
        assert result.renta_provision == pytest.approx(80_000)

    def test_withholdings_do_not_reduce_vat_provision(self, calculator, profile):
        result = calculator.calculate(
            profile, make_input(income=5_000_000, withholdings=300_000, vat=400_000)
        )
        assert result.iva_provision == 400_000

    def test_deterministic(self, calculator, profile):
        monthly = make_input(income=7_300_000, expenses=1_234_567, withholdings=11, vat=222_222)
        assert calculator.calculate(profile, monthly) == calculator.calculate(profile, monthly)
        assert compute_provision(profile, monthly) == calculator.calculate(profile, monthly)

    def test_base_never_negative(self, calculator, profile):
        result = calculator.calculate(profile, make_input(income=1_000_000, expenses=3_000_000))

        assert result.base == 0
        assert result.renta_provision == 0
        # Cash shortfall is reported, not floored
        assert result.cash_after_provision == pytest.approx(-2_000_000)
        assert result.risk_level == RiskLevel.HIGH

    @pytest.mark.parametrize("persona", [PersonaType.JURIDICA, PersonaType.UNKNOWN])
    def test_persona_gate(self, calculator, persona):
        profile = make_profile(persona_type=persona)

        with pytest.raises(UnsupportedProfileError) as exc:
            calculator.calculate(profile, make_input(income=1_000_000))
        assert "natural" in str(exc.value)
        assert exc.value.reason == "unsupported_profile"

    @pytest.mark.parametrize("vat_responsible", [VatResponsible.NO, VatResponsible.UNKNOWN])
    @pytest.mark.parametrize("vat_collected", [0, 1, 500_000, 99_000_000])
    def test_vat_gate(self, calculator, vat_responsible, vat_collected):
        profile = make_profile(vat_responsible=vat_responsible)
        result = calculator.calculate(profile, make_input(income=2_000_000, vat=vat_collected))
        assert result.iva_provision == 0

    @pytest.mark.parametrize("regimen", list(Regimen))
    def test_style_monotonicity(self, calculator, regimen):
        monthly = make_input(income=6_000_000, expenses=1_500_000)
        provisions = [
            calculator.calculate(make_profile(regimen=regimen, provision_style=style), monthly).renta_provision
            for style in (ProvisionStyle.AGGRESSIVE, ProvisionStyle.BALANCED, ProvisionStyle.CONSERVATIVE)
        ]
        assert provisions == sorted(provisions)

    @pytest.mark.parametrize("regimen", list(Regimen))
    @pytest.mark.parametrize("vat_responsible", list(VatResponsible))
    @pytest.mark.parametrize("style", list(ProvisionStyle))
    def test_zero_month_is_low_risk(self, calculator, regimen, vat_responsible, style):
        profile = make_profile(regimen=regimen, vat_responsible=vat_responsible, provision_style=style)
        result = calculator.calculate(profile, make_input())

        assert result.total_provision == 0
        assert result.cash_after_provision == 0
        assert result.risk_level == RiskLevel.LOW


class TestRiskClassifier:
    """Test risk tier boundaries."""

    def test_negative_cash_is_high(self):
        assert classify_risk(-0.01, 1_000_000) == RiskLevel.HIGH

    def test_just_below_threshold_is_medium(self):
        assert classify_risk(149_999, 1_000_000) == RiskLevel.MEDIUM

    def test_threshold_is_low(self):
        assert classify_risk(150_000, 1_000_000) == RiskLevel.LOW

    def test_zero_cash_zero_income_is_low(self):
        assert classify_risk(0, 0) == RiskLevel.LOW


# =============================================================================
# HISTORY AGGREGATOR TESTS
# =============================================================================

class TestHistoryAggregator:
    """Test the trailing-window trend series."""

    TODAY = date(2026, 10, 18)

    @pytest.fixture
    def aggregator(self):
        return HistoryAggregator()

    @pytest.fixture
    def fourteen_months(self):
        """Sep 2025 .. Oct 2026, shuffled."""
        records = []
        for offset in range(14):
            period = period_number(2025, 9) + offset
            year, month = divmod(period - 1, 12)
            records.append(make_input(year=year, month=month + 1, income=1_000_000 * (offset + 1)))
        return records[::2] + records[1::2]

    def test_window_keeps_most_recent_months_ascending(self, aggregator, fourteen_months):
        items = aggregator.build_series(make_profile(), fourteen_months, 6, self.TODAY)

        assert [(i.year, i.month) for i in items] == [
            (2026, 5), (2026, 6), (2026, 7), (2026, 8), (2026, 9), (2026, 10),
        ]

    def test_window_crosses_year_boundary(self, aggregator, fourteen_months):
        items = aggregator.build_series(make_profile(), fourteen_months, 12, self.TODAY)

        assert len(items) == 12
        assert (items[0].year, items[0].month) == (2025, 11)
        assert (items[-1].year, items[-1].month) == (2026, 10)

    def test_absent_months_are_not_filled(self, aggregator):
        records = [
            make_input(year=2026, month=10, income=1),
            make_input(year=2026, month=7, income=1),
            make_input(year=2026, month=2, income=1),
        ]
        items = aggregator.build_series(make_profile(), records, 6, self.TODAY)

        assert [(i.year, i.month) for i in items] == [(2026, 7), (2026, 10)]

    def test_items_carry_calculated_values(self, aggregator):
        record = make_input(year=2026, month=9, income=10_000_000, expenses=2_000_000, vat=500_000)
        (item,) = aggregator.build_series(make_profile(), [record], 3, self.TODAY)

        assert item.income_cop == 10_000_000
        assert item.deductible_expenses_cop == 2_000_000
        assert item.total_provision == pytest.approx(900_000)
        assert item.cash_after_provision == pytest.approx(7_100_000)
        assert item.risk_level == RiskLevel.LOW
        assert item.label == "2026-09"

    def test_unsupported_profile_rows_are_dropped(self, aggregator, fourteen_months):
        profile = make_profile(persona_type=PersonaType.JURIDICA)
        assert aggregator.build_series(profile, fourteen_months, 6, self.TODAY) == []

    def test_unsupported_rows_dropped_without_failing_the_rest(self, fourteen_months):
        class FlakyCalculator(ProvisionCalculator):
            def calculate(self, profile, monthly_input):
                if monthly_input.month == 8:
                    raise UnsupportedProfileError()
                return super().calculate(profile, monthly_input)

        items = HistoryAggregator(FlakyCalculator()).build_series(
            make_profile(), fourteen_months, 6, self.TODAY
        )
        assert [i.month for i in items] == [5, 6, 7, 9, 10]

    @pytest.mark.parametrize("window", [0, 25])
    def test_window_bounds(self, aggregator, window):
        with pytest.raises(ValueError):
            aggregator.build_series(make_profile(), [], window, self.TODAY)

    def test_empty_input(self, aggregator):
        assert aggregator.build_series(make_profile(), [], 6, self.TODAY) == []


# =============================================================================
# PROMPT TESTS
# =============================================================================

class TestPrompts:
    """Test the assistant's prompt builders."""

    @staticmethod
    def _block(text: str) -> dict:
        assert text.startswith(PROVISION_CONTEXT_HEADER)
        return json.loads(text[len(PROVISION_CONTEXT_HEADER):])

    def test_system_prompt_includes_reference(self):
        prompt = get_system_prompt()
        assert "Ventanilla Única" in prompt
        assert "ordinario: 10%" in prompt

    def test_conversation_context(self):
        history = [
            ChatMessage(conversation_id="c1", role="user", content="Hola"),
            ChatMessage(conversation_id="c1", role="assistant", content="¿En qué te ayudo?"),
        ]
        context = build_conversation_context(history, "¿Cuánto provisiono?")

        assert context.splitlines()[1:] == [
            "Usuario: Hola",
            "Asistente: ¿En qué te ayudo?",
            "Usuario: ¿Cuánto provisiono?",
        ]

    def test_provision_context_ok(self):
        monthly = make_input(income=10_000_000, expenses=2_000_000, vat=500_000)
        block = self._block(build_provision_context(make_profile(), monthly, 2026, 10))

        assert block["status"] == "ok"
        assert block["period"] == {"year": 2026, "month": 10}
        assert block["breakdown"]["total_provision"] == pytest.approx(900_000)
        assert block["breakdown"]["risk_level"] == "low"

    def test_provision_context_missing_profile(self):
        block = self._block(build_provision_context(None, make_input(), 2026, 10))
        assert block["status"] == "missing_profile"
        assert "breakdown" not in block

    def test_provision_context_missing_input(self):
        block = self._block(build_provision_context(make_profile(), None, 2026, 10))
        assert block["status"] == "missing_monthly_input"

    def test_provision_context_unsupported_profile(self):
        profile = make_profile(persona_type=PersonaType.JURIDICA)
        block = self._block(build_provision_context(profile, make_input(), 2026, 10))

        assert block["status"] == "unsupported_profile"
        assert "natural" in block["reason"]


# =============================================================================
# RATE LIMITER TESTS
# =============================================================================

class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestRateLimiter:
    """Test the sliding-window limiter."""

    def test_allows_up_to_limit(self):
        limiter = RateLimiter(limit=3, window_seconds=60, clock=FakeClock())

        results = [limiter.check("1.2.3.4") for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert [r.remaining for r in results] == [2, 1, 0, 0]

    def test_window_slides(self):
        clock = FakeClock()
        limiter = RateLimiter(limit=2, window_seconds=60, clock=clock)

        limiter.check("ip")
        clock.now += 30
        limiter.check("ip")
        blocked = limiter.check("ip")
        assert not blocked.allowed
        assert blocked.reset_in_seconds == 30

        clock.now += 31
        assert limiter.check("ip").allowed

    def test_keys_are_independent(self):
        limiter = RateLimiter(limit=1, window_seconds=60, clock=FakeClock())

        assert limiter.check("a").allowed
        assert limiter.check("b").allowed
        assert not limiter.check("a").allowed

    def test_shared_store(self):
        store = InMemoryRateLimitStore()
        clock = FakeClock()
        first = RateLimiter(limit=1, window_seconds=60, store=store, clock=clock)
        second = RateLimiter(limit=1, window_seconds=60, store=store, clock=clock)

        assert first.check("ip").allowed
        assert not second.check("ip").allowed

    def test_idle_keys_are_evicted(self):
        store = InMemoryRateLimitStore()
        clock = FakeClock()
        limiter = RateLimiter(limit=5, window_seconds=60, store=store, clock=clock)

        for ip in ("10.0.0.1", "10.0.0.2", "10.0.0.3"):
            limiter.check(ip)
        assert len(store) == 3

        clock.now += 61
        limiter.check("10.0.0.4")

        assert len(store) == 1
        assert store.get("10.0.0.1") == []

    def test_active_keys_survive_eviction(self):
        store = InMemoryRateLimitStore()
        clock = FakeClock()
        limiter = RateLimiter(limit=5, window_seconds=60, store=store, clock=clock)

        limiter.check("idle")
        clock.now += 30
        limiter.check("busy")
        clock.now += 31
        result = limiter.check("other")

        assert result.allowed
        assert store.get("busy") == [1030.0]
        assert store.get("idle") == []

    def test_client_ip_from_forwarded_for(self):
        assert get_client_ip({"x-forwarded-for": " 10.0.0.1 , 10.0.0.2"}) == "10.0.0.1"

    def test_client_ip_from_real_ip(self):
        assert get_client_ip({"x-real-ip": "10.0.0.9"}) == "10.0.0.9"

    def test_client_ip_unknown(self):
        assert get_client_ip({}) == "unknown"


# =============================================================================
# STORAGE TESTS
# =============================================================================

class TestStorage:
    """Test the in-memory repositories."""

    def test_profile_upsert_keeps_created_at(self):
        store = TaxProfileStore()
        first = store.upsert("u1", make_profile())
        second = store.upsert("u1", make_profile(regimen=Regimen.ORDINARIO))

        assert second.created_at == first.created_at
        assert second.updated_at >= first.updated_at
        assert store.get("u1").regimen == Regimen.ORDINARIO
        assert store.get("u2") is None

    def test_monthly_upsert_is_last_write_wins(self):
        store = MonthlyInputStore()
        first = store.upsert("u1", make_input(income=1))
        second = store.upsert("u1", make_input(income=2))

        assert second.id == first.id
        assert store.get("u1", 2026, 10).income_cop == 2

    def test_list_recent_is_per_user_and_descending(self):
        store = MonthlyInputStore()
        for month in (3, 1, 2):
            store.upsert("u1", make_input(month=month))
        store.upsert("u2", make_input(month=4))

        rows = store.list_recent("u1", limit=2)
        assert [r.month for r in rows] == [3, 2]

    def test_conversation_ownership(self):
        store = ConversationStore()
        conversation = store.create("u1")

        assert store.find(conversation.id, "u1") is not None
        assert store.find(conversation.id, "u2") is None
        assert store.find(conversation.id, None) is None

    def test_recent_messages_are_chronological(self):
        store = ConversationStore()
        conversation = store.create(None)
        for i in range(12):
            store.add_message(conversation.id, "user", f"m{i}", None)

        recent = store.recent_messages(conversation.id, 10)
        assert [m.content for m in recent] == [f"m{i}" for i in range(2, 12)]

    def test_add_message_to_missing_conversation(self):
        with pytest.raises(StorageError):
            ConversationStore().add_message("nope", "user", "hola", None)

    def test_document_blob_paths_are_unique(self):
        store = DocumentStore()
        store.upload("u1/1-a.pdf", b"%PDF")
        with pytest.raises(StorageError):
            store.upload("u1/1-a.pdf", b"%PDF")


# =============================================================================
# AI CLIENT TESTS
# =============================================================================

class TestAIClient:
    """Test the OpenAI wrapper without network calls."""

    REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")

    def _status_error(self, cls, status, message, body=None):
        return cls(message, response=httpx.Response(status, request=self.REQUEST), body=body)

    def test_mock_mode_without_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        get_settings.cache_clear()
        try:
            client = AdvisorAIClient(api_key=None, model="gpt-test")
        finally:
            get_settings.cache_clear()

        assert not client.is_connected
        response = client.generate_reply("system", "hola")
        assert response.success
        assert response.provider == "mock"
        assert response.content

    def test_timeout(self):
        error = openai.APITimeoutError(request=self.REQUEST)
        assert classify_openai_error(error) == AIErrorKind.TIMEOUT

    def test_request_timeout_status(self):
        error = self._status_error(openai.APIStatusError, 408, "Request Timeout")
        assert classify_openai_error(error) == AIErrorKind.TIMEOUT

    def test_auth(self):
        error = self._status_error(openai.AuthenticationError, 401, "Incorrect API key")
        assert classify_openai_error(error) == AIErrorKind.AUTH

    def test_permission_denied(self):
        error = self._status_error(openai.PermissionDeniedError, 403, "Forbidden")
        assert classify_openai_error(error) == AIErrorKind.AUTH

    def test_model_not_found(self):
        error = self._status_error(
            openai.NotFoundError, 404, "The model `gpt-x` does not exist",
            body={"code": "model_not_found"},
        )
        assert classify_openai_error(error) == AIErrorKind.MODEL_NOT_FOUND

    def test_other_errors_are_upstream(self):
        error = self._status_error(openai.InternalServerError, 500, "Server error")
        assert classify_openai_error(error) == AIErrorKind.UPSTREAM

    def test_completed_call_reports_tokens(self, caplog):
        client = AdvisorAIClient(api_key="sk-test", model="gpt-test")
        completion = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="  Provisiona 900.000 COP. "))],
            usage=SimpleNamespace(total_tokens=42),
        )
        client.client = SimpleNamespace(
            chat=SimpleNamespace(completions=SimpleNamespace(create=lambda **kwargs: completion))
        )

        with caplog.at_level(logging.INFO, logger="openai_client"):
            response = client.generate_reply("system", "hola")

        assert response.success
        assert response.content == "Provisiona 900.000 COP."
        assert response.tokens_used == 42
        assert "tokens=42" in caplog.text


# =============================================================================
# RUN TESTS
# =============================================================================

if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
