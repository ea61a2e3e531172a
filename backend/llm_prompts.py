"""
Ventanilla Única - LLM Prompts
==============================
System prompt and context builders for the conversational assistant.

CRITICAL RULES FOR LLM USAGE:
1. LLM ONLY generates natural language guidance
2. LLM NEVER calculates provisions - that's done in Python
3. Provision numbers are PROVIDED to the LLM as a structured block

The prompts in this module enforce these rules.
"""

import json
from typing import Any, Dict, List, Optional

from tax_constants import get_all_constants_for_llm
from models import ChatMessage, MonthlyInput, TaxProfile
from provision_calculator import UnsupportedProfileError, compute_provision


# =============================================================================
# ASSISTANT SYSTEM PROMPT
# =============================================================================

VENTANILLA_UNICA_SYSTEM_PROMPT = """Eres Ventanilla Única, un copiloto financiero y fiscal para trabajadores independientes y pequeñas empresas en Colombia.

Tu misión es reducir el estrés financiero del usuario y ayudarle a tomar mejores decisiones paso a paso.

Responde SIEMPRE:
- claro
- práctico
- accionable
- en español neutro

Si faltan datos, haz 1–3 preguntas antes de responder.

Nunca inventes fechas oficiales, leyes o cifras obligatorias.
Cuando algo dependa del caso concreto, recomiéndalo verificar con contador o DIAN.

Tu rol NO es dar asesoría legal definitiva.
Tu rol es orientar, explicar y guiar.

-----------------------------------------------------
BASE DE CONOCIMIENTO DEL COPILOTO
-----------------------------------------------------

IMPUESTOS BÁSICOS

Los negocios pequeños en Colombia interactúan normalmente con:
- Impuesto de renta
- IVA (si aplica)
- Retenciones
- Facturación electrónica

Idea clave:
El mayor error financiero es NO provisionar impuestos.

Recomendación general:
Los negocios suelen reservar mensualmente parte de sus ingresos para impuestos.
Rangos orientativos:
- freelancers/servicios: 10–25% ingresos
Nunca presentar estos porcentajes como obligatorios.

El IVA cobrado NO es ingreso del negocio.
Es dinero retenido para el Estado.

-----------------------------------------------------
GASTOS DEDUCIBLES

Un gasto suele ser deducible si:
1) Está relacionado con la actividad
2) Tiene soporte documental
3) Es razonable y proporcional

Gastos comunes:
- portátiles y equipos
- software y suscripciones
- internet y telefonía
- coworking u oficina
- formación profesional
- marketing y publicidad
- contador y servicios profesionales

Siempre recomendar guardar:
- facturas
- comprobantes de pago
- extractos bancarios

Nunca afirmar deducciones con certeza absoluta.

-----------------------------------------------------
CONTRATACIÓN

Dos formas comunes:
- Contratista → más flexible y menor riesgo inicial
- Empleado → mayor coste total y obligaciones

El mayor error es contratar sin estabilidad financiera.

Antes de contratar recomendar:
1) Revisar flujo de caja
2) Estimar coste total mensual
3) Tener estabilidad de ingresos
4) Tener provisiones

-----------------------------------------------------
SALUD FINANCIERA

Facturar ≠ tener dinero disponible.

Todo negocio debería provisionar:
- impuestos
- gastos fijos
- emergencias

Semáforo financiero:
VERDE → provisiones y estabilidad
AMARILLO → flujo irregular
ROJO → sin provisiones y riesgo alto

Checklist mensual:
1) Revisar ingresos
2) Revisar gastos
3) Provisionar impuestos
4) Revisar flujo de caja
5) Evaluar estado financiero

-----------------------------------------------------
PROVISIÓN MENSUAL DEL USUARIO

Si recibes un bloque "PROVISIÓN MENSUAL CALCULADA", esas cifras vienen del
sistema y son la única fuente válida. No las recalcules ni las cambies.
Si el estado no es "ok", explica qué falta para poder calcularla.

-----------------------------------------------------

Cuando respondas:
1) Explica
2) Da pasos accionables
3) Advierte riesgos si existen
4) Sé tranquilizador y claro

Nunca respondas con lenguaje legal complejo.

-----------------------------------------------------"""


def get_system_prompt() -> str:
    """System prompt plus the authoritative provisioning reference."""
    return f"{VENTANILLA_UNICA_SYSTEM_PROMPT}\n\n{get_all_constants_for_llm()}"


# =============================================================================
# CONVERSATION CONTEXT
# =============================================================================

def build_conversation_context(history: List[ChatMessage], message: str) -> str:
    """
    Render prior messages plus the new one as a transcript.

    Args:
        history: Previous messages, oldest first
        message: The user's new message
    """
    lines = [
        f"{'Asistente' if item.role == 'assistant' else 'Usuario'}: {item.content}"
        for item in history
    ]
    lines.append(f"Usuario: {message}")

    return f"Contexto de conversacion (ultimos {len(history)} mensajes):\n" + "\n".join(lines)


# =============================================================================
# PROVISION CONTEXT BLOCK
# =============================================================================

PROVISION_CONTEXT_HEADER = "=== PROVISIÓN MENSUAL CALCULADA ==="

MISSING_PROFILE_REASON = "El usuario no ha completado su perfil tributario."
MISSING_INPUT_REASON = "El usuario no ha registrado sus datos del mes."


def build_provision_context(
    profile: Optional[TaxProfile],
    monthly_input: Optional[MonthlyInput],
    year: int,
    month: int,
) -> str:
    """
    Serialize the current month's provision (or why there is none) into a
    block the assistant can cite.
    """
    block: Dict[str, Any] = {"period": {"year": year, "month": month}}

    if profile is None:
        block.update(status="missing_profile", reason=MISSING_PROFILE_REASON)
    elif monthly_input is None:
        block.update(status="missing_monthly_input", reason=MISSING_INPUT_REASON)
    else:
        try:
            breakdown = compute_provision(profile, monthly_input)
        except UnsupportedProfileError as e:
            block.update(status=e.reason, reason=e.message)
        else:
            block.update(
                status="ok",
                inputs={
                    "income_cop": monthly_input.income_cop,
                    "deductible_expenses_cop": monthly_input.deductible_expenses_cop,
                    "withholdings_cop": monthly_input.withholdings_cop,
                    "vat_collected_cop": monthly_input.vat_collected_cop,
                },
                breakdown=breakdown.model_dump(mode="json"),
            )

    return f"{PROVISION_CONTEXT_HEADER}\n{json.dumps(block, indent=2, ensure_ascii=False)}"


def build_provision_summary(breakdown: Dict[str, Any]) -> str:
    """Build a human-readable summary of a provision breakdown."""
    lines = [
        "=== PROVISIÓN DEL MES ===",
        f"Base (ingresos - gastos): ${breakdown.get('base', 0):,.0f} COP",
        f"Provisión renta: ${breakdown.get('renta_provision', 0):,.0f} COP "
        f"({breakdown.get('renta_rate_base', 0) * 100:.0f}% x {breakdown.get('provision_factor', 1):.2f})",
        f"Provisión IVA: ${breakdown.get('iva_provision', 0):,.0f} COP",
        "",
        f"TOTAL A PROVISIONAR: ${breakdown.get('total_provision', 0):,.0f} COP",
        f"Caja después de provisión: ${breakdown.get('cash_after_provision', 0):,.0f} COP",
        f"Riesgo: {breakdown.get('risk_level', 'unknown')}",
    ]
    return "\n".join(lines)


__all__ = [
    'VENTANILLA_UNICA_SYSTEM_PROMPT',
    'PROVISION_CONTEXT_HEADER',
    'get_system_prompt',
    'build_conversation_context',
    'build_provision_context',
    'build_provision_summary',
]
