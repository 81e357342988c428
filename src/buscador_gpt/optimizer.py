"""Prompt optimizer: wraps a raw request in the Ingtec 4-D template."""

from __future__ import annotations

from .classifier import classify
from .models import Mode, TargetModel, Tier

ROLE_PREAMBLE = "Rol: Eres Asistente Ingtec, experta en optimización y resolución precisa."
OBJECTIVE = "Objetivo: Resolver la solicitud del usuario con precisión y estructura."

METHODOLOGY = (
    "Metodología 4-D:",
    "1) Deconstruir: identifica intención, entidades clave, requisitos y vacíos.",
    "2) Diagnosticar: detecta ambigüedades y define lo que falta.",
    "3) Desarrollar: selecciona técnicas óptimas (restricciones, ejemplos, razonamiento).",
    "4) Entregar: produce respuesta final con formato claro.",
)

OUTPUT_SPEC = (
    "Especificaciones de salida:",
    "- Formato: pasos numerados, secciones, bullets concisos.",
    "- Tono: profesional y claro.",
    "- Validación: incluye supuestos si faltan datos y solicita 2-3 aclaraciones breves si es necesario.",
)

TIER_DIRECTIVE = {
    Tier.DETAILED: "- Complejidad: permite cadena de pensamiento resumida y marcos sistemáticos.",
    Tier.BASIC: "- Enfoque: solución directa y concisa.",
}

PLATFORM_NOTES = {
    TargetModel.CLAUDE.value: "• Nota para Claude: Aprovecha contexto largo y marcos de razonamiento.",
    TargetModel.GEMINI.value: "• Nota para Gemini: Enfatiza creatividad y análisis comparativo cuando aplique.",
    TargetModel.CHATGPT.value: "• Nota para ChatGPT: Usa secciones claras y pasos accionables.",
}
GENERIC_NOTE = "• Nota: Aplica mejores prácticas universales de prompts."

EXPLANATIONS = {
    Tier.BASIC: (
        "Cambios aplicados:",
        "- Se asignó un rol experto y un objetivo explícito.",
        "- Se definió un formato de salida breve y accionable.",
        "Técnicas aplicadas: asignación de rol, estructura de salida, enfoque directo.",
    ),
    Tier.DETAILED: (
        "Cambios aplicados:",
        "- Se asignó un rol experto y un objetivo explícito.",
        "- Se añadió la metodología 4-D con validación de supuestos.",
        "- Se habilitó razonamiento paso a paso resumido.",
        "Técnicas aplicadas: asignación de rol, descomposición de tareas, cadena de pensamiento, marcos sistemáticos.",
    ),
}


def _label(target: TargetModel | str) -> str:
    return target.value if isinstance(target, TargetModel) else str(target)


def platform_note(target: TargetModel | str) -> str:
    """Static tip for the target model; unknown labels get the generic note."""
    return PLATFORM_NOTES.get(_label(target), GENERIC_NOTE)


def resolve_tier(text: str, mode: Mode) -> Tier | None:
    """Tier the optimizer will use for ``mode``, or None for passthrough."""
    if mode is Mode.NO_ASSISTANT:
        return None
    if mode is Mode.AUTO:
        return classify(text)
    if mode is Mode.DETAILED:
        return Tier.DETAILED
    return Tier.BASIC


def build_prompt(text: str, target: TargetModel | str, tier: Tier) -> str:
    lines = [
        ROLE_PREAMBLE,
        f"IA objetivo: {_label(target)}",
        OBJECTIVE,
        f'Entrada del usuario: "{text.strip()}"',
        *METHODOLOGY,
        platform_note(target),
        *OUTPUT_SPEC,
        TIER_DIRECTIVE[tier],
        "",
        *EXPLANATIONS[tier],
    ]
    return "\n".join(lines)


def optimize(text: str, target: TargetModel | str, mode: Mode) -> str:
    """Return the text to send for ``mode``.

    ``NO_ASSISTANT`` is an exact passthrough (trimmed only). ``AUTO`` picks a
    tier with the classifier; ``BASIC`` and ``DETAILED`` wrap the request in
    the structured template followed by a short explanation block.
    """
    text = text or ""
    tier = resolve_tier(text, mode)
    if tier is None:
        return text.strip()
    return build_prompt(text, target, tier)
