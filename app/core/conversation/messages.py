"""
Customer-facing message templates (pt-BR).

Every booking outcome shown to the customer comes from here, never from the
language model.
"""

from typing import Optional

from app.config import get_settings
from app.core.errors import (
    ConflictError,
    OutsideHoursError,
    SchedulingError,
    ValidationError,
)
from app.core.scheduling.categories import LABELS, normalize_agenda_type
from app.core.scheduling.timeutil import format_range
from app.models.database import Appointment

# Alternatives listed in a chat rejection
CHAT_ALTERNATIVES = 2

FALLBACK_REPLY = (
    "Olá! 😊 Seja bem-vindo(a) à Artestofados!\n\n"
    "No momento estou com um probleminha técnico, mas fique tranquilo(a)! "
    "Um dos nossos atendentes vai te responder em breve.\n\n"
    "Por favor, me conte: como podemos ajudar você hoje?"
)

TECHNICAL_FAILURE = (
    "Desculpe, estou tendo problemas técnicos no momento. "
    "Um atendente humano entrará em contato em breve. 🙏"
)

ASK_ABSOLUTE_DATE = (
    "Para eu verificar a disponibilidade, me envie a data e o horário no "
    "formato dd/mm/aaaa às HH:MM (por exemplo: 10/03/2025 às 14:00). 📅"
)

ASK_CATEGORY = (
    "Perfeito! Você prefere uma reunião online ou uma visita à nossa loja? "
    "Me diga: online ou na loja? 😊"
)

NOTHING_TO_CHANGE = (
    "Não encontrei nenhum agendamento no seu número para alterar ou cancelar. "
    "Se quiser, posso marcar um novo horário para você. 😊"
)

CALENDAR_FAILURE = (
    "⚠️ Não consegui confirmar seu agendamento agora por uma instabilidade "
    "na nossa agenda. Um atendente vai entrar em contato para finalizar. 🙏"
)

SYSTEM_PROMPT = """Você é Maria, especialista virtual da {business_name}, empresa especializada em fabricação e reforma de estofados em João Pessoa - PB.

PERSONALIDADE E TOM:
- Seja amigável, calorosa e atenciosa
- Use emojis moderadamente 😊
- Trate o cliente pelo nome quando possível
- Mantenha respostas concisas mas completas
- Faça UMA pergunta por vez

FLUXO DA CONVERSA (estado atual: {state}):
1. initial: cumprimente, apresente-se e pergunte como pode ajudar
2. classifying: identifique se é FABRICAÇÃO ou REFORMA
3. collecting_info:
   - REFORMA: pergunte sobre o móvel e solicite fotos
   - FABRICAÇÃO: pergunte sobre o projeto e ofereça "Posso agendar uma reunião online ou uma visita em nossa loja. Qual prefere?"
4. completed: agradeça e deixe o canal aberto

INFORMAÇÕES DA EMPRESA:
- Endereço: {business_address}
- Horário de atendimento: {working_hours}

IMPORTANTE SOBRE AGENDAMENTOS:
- NUNCA confirme, cancele ou remarque agendamentos: o sistema faz isso e informa o cliente
- Para agendar, peça a data e o horário no formato dd/mm/aaaa às HH:MM e se será online ou na loja

Cliente: {customer_name}"""


def build_system_prompt(state: str, customer_name: Optional[str], working_hours: str) -> str:
    """System prompt for the generative reply."""
    settings = get_settings()
    return SYSTEM_PROMPT.format(
        business_name=settings.business_name,
        business_address=settings.business_address,
        working_hours=working_hours,
        state=state,
        customer_name=customer_name or "não informado",
    )


def describe_appointment(appointment: Appointment) -> str:
    """'Reunião online em dd/mm/yyyy HH:MM - HH:MM'."""
    category = normalize_agenda_type(appointment.agenda_type)
    label = LABELS[category] if category else appointment.summary
    return f"{label} em {format_range(appointment.start_time, appointment.end_time)}"


def booking_confirmed(appointment: Appointment, link: Optional[str] = None) -> str:
    """Confirmation for a booking the coordinator actually persisted."""
    text = f"✅ Agendamento confirmado: {describe_appointment(appointment)}"
    if link:
        text += f"\n🔗 {link}"
    return f"{text}\n\nSe precisar alterar ou cancelar, me avise por aqui. 👍"


def booking_rejected(error: SchedulingError) -> str:
    """Rejection with the reason and up to two alternatives."""
    if isinstance(error, OutsideHoursError):
        header = (
            "⌛ Infelizmente este horário está fora do nosso expediente "
            f"({error.working_hours})."
        )
        alternatives = error.alternatives
    elif isinstance(error, ConflictError):
        header = "⚠️ Este horário já está ocupado para esta modalidade."
        alternatives = error.alternatives
    elif isinstance(error, ValidationError):
        return ASK_ABSOLUTE_DATE
    else:
        return CALENDAR_FAILURE

    lines = [f"• {slot.formatted}" for slot in alternatives[:CHAT_ALTERNATIVES]]
    if not lines:
        return f"{header}\n\n{ASK_ABSOLUTE_DATE}"
    suggestions = "\n".join(lines)
    return (
        f"{header}\n\nSugestões de horários disponíveis:\n{suggestions}"
        "\n\nPosso reservar um desses horários para você?"
    )


def booking_cancelled(appointment: Appointment) -> str:
    """Confirmation of a cancellation."""
    return f"✅ Agendamento cancelado: {describe_appointment(appointment)}"


def booking_rescheduled(appointment: Appointment) -> str:
    """Confirmation of a new time for an existing booking."""
    return f"✅ Agendamento remarcado: {describe_appointment(appointment)}"
