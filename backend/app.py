"""
Ventanilla Única - Streamlit App
================================
Financial copilot for independent workers in Colombia.

Flow:
1. Tax profile (persona, régimen, IVA, provision style)
2. Monthly figures (income, expenses, withholdings, VAT collected)
3. Provision estimate + history chart
4. Chat with the assistant, grounded on the calculated provision
"""

import sys
import os

# Path setup for Streamlit Cloud
_current_file = os.path.abspath(__file__)
_backend_dir = os.path.dirname(_current_file)
if _backend_dir not in sys.path:
    sys.path.insert(0, _backend_dir)

import streamlit as st
import pandas as pd
from datetime import date
from typing import Optional

from tax_constants import (
    ActivityType, MAX_HISTORY_MONTHS, PersonaType, ProvisionStyle, Regimen,
    RiskLevel, VatResponsible,
)
from validation import ValidationError, sanitize_monthly_input, sanitize_tax_profile
from provision_calculator import HistoryAggregator, UnsupportedProfileError, compute_provision
from llm_prompts import (
    build_conversation_context, build_provision_context, build_provision_summary, get_system_prompt,
)
from openai_client import AdvisorAIClient
from storage import ConversationStore, MonthlyInputStore, TaxProfileStore


# =============================================================================
# PAGE CONFIGURATION
# =============================================================================

st.set_page_config(
    page_title="Ventanilla Única - Copiloto financiero",
    page_icon="🧭",
    layout="wide",
    initial_sidebar_state="expanded"
)

st.markdown("""
<style>
    .main .block-container {
        padding-top: 2rem;
        max-width: 1100px;
    }
    .risk-high { background: #dc3545; color: white; padding: 1rem; border-radius: 12px; text-align: center; }
    .risk-medium { background: #f0ad4e; color: white; padding: 1rem; border-radius: 12px; text-align: center; }
    .risk-low { background: #14A66B; color: white; padding: 1rem; border-radius: 12px; text-align: center; }
</style>
""", unsafe_allow_html=True)


# =============================================================================
# SESSION STATE
# =============================================================================

LOCAL_USER_ID = "local-user"


def _get_api_key() -> Optional[str]:
    """Get API key from Streamlit secrets or environment."""
    try:
        if hasattr(st, 'secrets') and 'OPENAI_API_KEY' in st.secrets:
            return st.secrets['OPENAI_API_KEY']
    except Exception:
        # No secrets.toml configured
        pass
    return os.environ.get('OPENAI_API_KEY')


def init_session_state():
    """Initialize all session state variables."""
    if 'profiles' not in st.session_state:
        st.session_state.profiles = TaxProfileStore()

    if 'monthly_inputs' not in st.session_state:
        st.session_state.monthly_inputs = MonthlyInputStore()

    if 'conversations' not in st.session_state:
        st.session_state.conversations = ConversationStore()

    if 'conversation_id' not in st.session_state:
        st.session_state.conversation_id = st.session_state.conversations.create(LOCAL_USER_ID).id

    if 'ai_client' not in st.session_state:
        st.session_state.ai_client = AdvisorAIClient(api_key=_get_api_key())

init_session_state()


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

RISK_LABELS = {
    RiskLevel.HIGH: "🔴 Riesgo alto: la caja no alcanza para las provisiones",
    RiskLevel.MEDIUM: "🟡 Riesgo medio: queda poca caja después de provisionar",
    RiskLevel.LOW: "🟢 Riesgo bajo: provisiones cubiertas",
}


def fmt_cop(amount: float) -> str:
    """Format number as Colombian pesos."""
    if amount < 0:
        return f"-${abs(amount):,.0f} COP"
    return f"${amount:,.0f} COP"


def enum_index(enum_cls, value) -> int:
    return list(enum_cls).index(value)


# =============================================================================
# HEADER
# =============================================================================

st.title("🧭 Ventanilla Única")
st.caption("Copiloto financiero y fiscal para independientes en Colombia. Orientación, no asesoría legal.")

profiles: TaxProfileStore = st.session_state.profiles
monthly_inputs: MonthlyInputStore = st.session_state.monthly_inputs
today = date.today()

tab1, tab2, tab3, tab4 = st.tabs([
    "🧾 Perfil tributario",
    "📅 Datos del mes",
    "📈 Histórico",
    "💬 Asistente",
])


# =============================================================================
# TAB 1: TAX PROFILE
# =============================================================================

with tab1:
    current = profiles.get(LOCAL_USER_ID)

    with st.form("tax_profile"):
        col1, col2 = st.columns(2)
        with col1:
            persona_type = st.selectbox(
                "Tipo de persona", [p.value for p in PersonaType],
                index=enum_index(PersonaType, current.persona_type) if current else 0,
            )
            regimen = st.selectbox(
                "Régimen", [r.value for r in Regimen],
                index=enum_index(Regimen, current.regimen) if current else 0,
            )
            vat_responsible = st.selectbox(
                "¿Responsable de IVA?", [v.value for v in VatResponsible],
                index=enum_index(VatResponsible, current.vat_responsible) if current else 2,
            )
        with col2:
            activity_type = st.selectbox(
                "Actividad", [a.value for a in ActivityType],
                index=enum_index(ActivityType, current.activity_type) if current else 0,
            )
            provision_style = st.selectbox(
                "Estilo de provisión", [s.value for s in ProvisionStyle],
                index=enum_index(ProvisionStyle, current.provision_style) if current else 1,
            )
            municipality = st.text_input("Municipio", value=(current.municipality or "") if current else "")

        if st.form_submit_button("Guardar perfil", type="primary"):
            try:
                profile = sanitize_tax_profile({
                    "persona_type": persona_type,
                    "activity_type": activity_type,
                    "regimen": regimen,
                    "vat_responsible": vat_responsible,
                    "provision_style": provision_style,
                    "municipality": municipality,
                })
                profiles.upsert(LOCAL_USER_ID, profile)
                st.success("Perfil guardado.")
            except ValidationError as e:
                st.error(f"{e.field}: {e.message}")

    if current and current.persona_type != PersonaType.NATURAL:
        st.info("Por ahora el cálculo de provisiones solo está disponible para persona natural.")


# =============================================================================
# TAB 2: MONTHLY INPUT + ESTIMATE
# =============================================================================

with tab2:
    col1, col2 = st.columns(2)
    with col1:
        year = st.number_input("Año", min_value=1900, max_value=3000, value=today.year, step=1)
    with col2:
        month = st.number_input("Mes", min_value=1, max_value=12, value=today.month, step=1)

    existing = monthly_inputs.get(LOCAL_USER_ID, int(year), int(month))

    with st.form("monthly_input"):
        income = st.number_input("Ingresos (COP)", min_value=0.0, step=100000.0,
                                 value=existing.income_cop if existing else 0.0)
        expenses = st.number_input("Gastos deducibles (COP)", min_value=0.0, step=100000.0,
                                   value=existing.deductible_expenses_cop if existing else 0.0)
        withholdings = st.number_input("Retenciones (COP)", min_value=0.0, step=10000.0,
                                       value=existing.withholdings_cop if existing else 0.0)
        vat_collected = st.number_input("IVA cobrado (COP)", min_value=0.0, step=10000.0,
                                        value=existing.vat_collected_cop if existing else 0.0)
        notes = st.text_area("Notas", value=(existing.notes or "") if existing else "")

        if st.form_submit_button("Guardar mes", type="primary"):
            try:
                monthly_inputs.upsert(LOCAL_USER_ID, sanitize_monthly_input({
                    "year": int(year),
                    "month": int(month),
                    "income_cop": income,
                    "deductible_expenses_cop": expenses,
                    "withholdings_cop": withholdings,
                    "vat_collected_cop": vat_collected,
                    "notes": notes,
                }))
                st.success("Datos del mes guardados.")
            except ValidationError as e:
                st.error(f"{e.field}: {e.message}")

    st.markdown("---")
    st.subheader("Provisión del mes")

    profile = profiles.get(LOCAL_USER_ID)
    monthly_input = monthly_inputs.get(LOCAL_USER_ID, int(year), int(month))

    if profile is None:
        st.warning("Completa tu perfil tributario para calcular.")
    elif monthly_input is None:
        st.warning("Completa tus datos del mes para calcular.")
    else:
        try:
            breakdown = compute_provision(profile, monthly_input)
        except UnsupportedProfileError:
            st.info("Esta función aún no está disponible para tu tipo de persona.")
        else:
            m1, m2, m3 = st.columns(3)
            m1.metric("Provisión renta", fmt_cop(breakdown.renta_provision))
            m2.metric("Provisión IVA", fmt_cop(breakdown.iva_provision))
            m3.metric("Total a provisionar", fmt_cop(breakdown.total_provision))

            st.markdown(
                f'<div class="risk-{breakdown.risk_level.value}">'
                f'<h3>{fmt_cop(breakdown.cash_after_provision)}</h3>'
                f'<p>{RISK_LABELS[breakdown.risk_level]}</p></div>',
                unsafe_allow_html=True,
            )

            with st.expander("Detalle del cálculo"):
                st.text(build_provision_summary(breakdown.model_dump(mode="json")))
                st.caption(breakdown.renta_note)
                st.caption(breakdown.iva_note)
                st.caption(breakdown.withholdings_note)


# =============================================================================
# TAB 3: HISTORY
# =============================================================================

with tab3:
    window = st.slider("Meses", min_value=1, max_value=MAX_HISTORY_MONTHS, value=6)
    profile = profiles.get(LOCAL_USER_ID)

    if profile is None:
        st.info("Sin perfil tributario no hay histórico.")
    else:
        items = HistoryAggregator().build_series(
            profile,
            monthly_inputs.list_recent(LOCAL_USER_ID, limit=MAX_HISTORY_MONTHS),
            window,
            today,
        )
        if not items:
            st.info("No hay meses registrados en este periodo.")
        else:
            df = pd.DataFrame([item.model_dump(mode="json") for item in items]).set_index("label")
            st.line_chart(df[["income_cop", "total_provision", "cash_after_provision"]])
            st.dataframe(
                df[["income_cop", "deductible_expenses_cop", "total_provision",
                    "cash_after_provision", "risk_level"]],
                use_container_width=True,
            )


# =============================================================================
# TAB 4: ASSISTANT
# =============================================================================

with tab4:
    conversations: ConversationStore = st.session_state.conversations
    conversation_id = st.session_state.conversation_id

    for msg in conversations.recent_messages(conversation_id, limit=50):
        with st.chat_message(msg.role):
            st.markdown(msg.content)

    prompt = st.chat_input("Pregunta sobre impuestos, gastos, contratación o flujo de caja...")
    if prompt:
        history = conversations.recent_messages(conversation_id, limit=10)
        conversations.add_message(conversation_id, "user", prompt, LOCAL_USER_ID)

        user_prompt = build_conversation_context(history, prompt)
        user_prompt += "\n\n" + build_provision_context(
            profiles.get(LOCAL_USER_ID),
            monthly_inputs.get(LOCAL_USER_ID, today.year, today.month),
            today.year,
            today.month,
        )

        with st.spinner("Pensando..."):
            response = st.session_state.ai_client.generate_reply(get_system_prompt(), user_prompt)

        if response.success and response.content:
            conversations.add_message(conversation_id, "assistant", response.content, LOCAL_USER_ID)
            st.rerun()
        else:
            st.error("No se pudo generar la respuesta. Intenta de nuevo en un momento.")


# =============================================================================
# SIDEBAR
# =============================================================================

with st.sidebar:
    st.markdown("### 🧭 Ventanilla Única")
    st.markdown("---")

    if st.session_state.ai_client.is_connected:
        st.success(f"🟢 IA conectada ({st.session_state.ai_client.model})")
    else:
        st.error("🔴 IA en modo demostración")
        st.caption("Agrega OPENAI_API_KEY en Settings")

    st.markdown("---")

    if st.button("🔄 Empezar de nuevo", use_container_width=True):
        for key in list(st.session_state.keys()):
            del st.session_state[key]
        st.rerun()

    st.caption("Orientación financiera, no asesoría legal definitiva.")
