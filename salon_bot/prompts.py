"""System prompt ("knowledge") for the WhatsApp booking assistant.

``compile_knowledge`` is a pure function of its inputs: the same tenant,
catalog, occupied slots, flag and ``now`` always produce the same text.
The prompt is in Brazilian Portuguese because that is the language the
assistant speaks to customers.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import date, datetime, time
from decimal import Decimal

from salon_bot.db.models import Service, Tenant
from salon_bot.services.availability import WEEKDAY_KEYS

NOT_INFORMED = "Não informado"

WEEKDAY_LABELS = {
    "monday": "Segunda",
    "tuesday": "Terça",
    "wednesday": "Quarta",
    "thursday": "Quinta",
    "friday": "Sexta",
    "saturday": "Sábado",
    "sunday": "Domingo",
}

SYSTEM_PROMPT_TEMPLATE = """Você é o assistente virtual da empresa "{company_name}" no WhatsApp.
Responda APENAS com base nas informações abaixo. Seja breve, cordial e objetivo.

## Data e hora atuais
Hoje é {current_date} ({current_weekday}). Agora são {current_time}.
Use isso para entender datas relativas como "amanhã" ou "sábado que vem".

## Empresa
Empresa: {company_name}
Endereço: {address}
Telefone: {phone}
Instagram: {instagram}
E-mail: {email}

## Horário de funcionamento
{business_hours}

## Serviços disponíveis
{services}

## Horários já ocupados (NUNCA ofereça estes horários)
{occupied_slots}

## Regras de agendamento
1. Só finalize um agendamento depois de confirmar com o cliente o serviço, a data e o horário.
2. Quando o cliente confirmar, inclua na sua resposta, uma única vez, uma linha exatamente no formato:
   [AGENDAR:<nome do serviço>|<AAAA-MM-DD>|<HH:MM>]
   Use o nome do serviço exatamente como aparece na lista de serviços.
3. Nunca ofereça um horário ocupado, fora do horário de funcionamento ou em um dia fechado.
4. Nunca mostre, explique ou mencione ao cliente a sintaxe entre colchetes; ela é processada automaticamente.
{birth_date_block}
## Regras gerais
- Responda sempre em português do Brasil.
- Se não souber a resposta, oriente o cliente a entrar em contato pelo telefone.
- Não invente informações, serviços, preços ou horários.
"""

BIRTH_DATE_BLOCK = """
## Data de nascimento
Ainda não sabemos a data de nascimento deste cliente.
- Antes de finalizar o primeiro agendamento, pergunte a data de nascimento UMA única vez.
- Se o cliente não quiser informar, siga com o agendamento normalmente.
- Quando o cliente informar, inclua na sua resposta exatamente: [NASCIMENTO:DD/MM/AAAA]
"""

NO_SERVICES_LINE = (
    "Nenhum serviço cadastrado. Não ofereça nem invente serviços; "
    "peça para o cliente entrar em contato pelo telefone."
)
NO_OCCUPIED_LINE = "Nenhum horário ocupado no momento."


def _or_placeholder(value: str | None) -> str:
    if value is None or not str(value).strip():
        return NOT_INFORMED
    return str(value).strip()


def format_price(price: Decimal | float | int | None) -> str:
    """Format a price the Brazilian way: ``R$ 35,00``."""
    amount = Decimal(str(price or 0)).quantize(Decimal("0.01"))
    return f"R$ {amount:,.2f}".replace(",", "X").replace(".", ",").replace("X", ".")


def format_business_hours(business_hours: dict | None) -> str:
    """One line per weekday, Monday first, open (start–end) or closed."""
    if not business_hours:
        return "Horário de funcionamento não informado."
    lines = []
    for key in WEEKDAY_KEYS:
        label = WEEKDAY_LABELS[key]
        day = business_hours.get(key) or {}
        if day.get("isOpen") and day.get("start") and day.get("end"):
            lines.append(f"- {label}: {day['start']} às {day['end']}")
        else:
            lines.append(f"- {label}: Fechado")
    return "\n".join(lines)


def format_services(services: Iterable[Service]) -> str:
    """``- name: price (duration min) description`` per service."""
    lines = []
    for service in services:
        line = f"- {service.name}: {format_price(service.price)} ({service.duration} min)"
        if service.description:
            line += f" {service.description.strip()}"
        lines.append(line)
    return "\n".join(lines) if lines else NO_SERVICES_LINE


def format_occupied_slots(occupied: Sequence[tuple[date, time]]) -> str:
    if not occupied:
        return NO_OCCUPIED_LINE
    return "\n".join(f"- {d.isoformat()} {t.strftime('%H:%M')}" for d, t in occupied)


def compile_knowledge(
    tenant: Tenant,
    services: Sequence[Service],
    occupied: Sequence[tuple[date, time]],
    birth_date_unknown: bool,
    now: datetime,
) -> str:
    """Build the complete system prompt for one conversation turn.

    Args:
        tenant: The tenant whose profile and hours are rendered.
        services: Active services only; inactive ones must be filtered out
            by the caller.
        occupied: Tenant-wide (date, time) pairs that are already booked.
        birth_date_unknown: Adds the birth-date collection block when true.
        now: Current tenant-local time.
    """
    return SYSTEM_PROMPT_TEMPLATE.format(
        company_name=_or_placeholder(tenant.company_name),
        current_date=now.strftime("%d/%m/%Y"),
        current_weekday=WEEKDAY_LABELS[WEEKDAY_KEYS[now.weekday()]],
        current_time=now.strftime("%H:%M"),
        address=_or_placeholder(tenant.address),
        phone=_or_placeholder(tenant.phone),
        instagram=_or_placeholder(tenant.instagram),
        email=_or_placeholder(tenant.email),
        business_hours=format_business_hours(tenant.business_hours),
        services=format_services(services),
        occupied_slots=format_occupied_slots(occupied),
        birth_date_block=BIRTH_DATE_BLOCK if birth_date_unknown else "",
    )
