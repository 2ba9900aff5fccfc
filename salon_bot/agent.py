"""LangGraph conversational engine for one inbound WhatsApp message.

Architecture:
  A linear StateGraph, recomputed from the database on every turn (there
  is no checkpointer: the message log *is* the memory):

    1. **prepare**  — tenant gate, catalog, occupied slots, last N turns,
                      compiled knowledge
    2. **generate** — single chat-completion call, no retries
    3. **execute**  — parse and apply ``[AGENDAR:…]`` / ``[NASCIMENTO:…]``
    4. **deliver**  — persist the cleaned reply, send it, refresh preview

  Routing:
    prepare → (skip?) → END
    prepare → generate → (failed?) → END
                       → execute → deliver → END

  Collaborators (session factory, LLM builder, gateway factory) are
  injected so tests and the CLI can swap them.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Annotated, Any

from langchain_core.messages import AIMessage, AnyMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from langgraph.graph import END, StateGraph
from langgraph.graph.message import add_messages
from sqlalchemy import select
from sqlalchemy.orm import Session
from typing_extensions import TypedDict

from salon_bot.config import (
    HISTORY_LIMIT,
    LLM_API_KEY,
    LLM_BASE_URL,
    LLM_MAX_TOKENS,
    LLM_TEMPERATURE,
    MODEL_NAME,
    REQUEST_TIMEOUT_SECONDS,
)
from salon_bot.db.models import (
    DIRECTION_INBOUND,
    DIRECTION_OUTBOUND,
    MESSAGE_SENT,
    Contact,
    Message,
    Service,
    Tenant,
    utcnow,
)
from salon_bot.db.session import SessionLocal
from salon_bot.directives import apply_directives, parse_directives
from salon_bot.prompts import compile_knowledge
from salon_bot.services.availability import local_now, occupied_slots
from salon_bot.services.inbox import touch_conversation
from salon_bot.services.metrics import metrics
from salon_bot.services.whatsapp_client import WhatsAppClient, message_id_from

logger = logging.getLogger(__name__)

GatewayFactory = Callable[[Tenant], Any]


class LLMReplyError(Exception):
    """The completion call failed or returned no usable content."""


# ── State schema ─────────────────────────────────────────────────────


class TurnState(TypedDict, total=False):
    """State flowing through the graph for a single inbound message.

    The ids and ``text`` are supplied by the caller; everything else is
    filled in by the nodes.  ``skip_reason`` short-circuits to END.
    """

    tenant_id: str
    contact_id: str
    conversation_id: str
    inbound_message_id: int
    sender: str
    text: str
    messages: Annotated[list[AnyMessage], add_messages]
    reply: str
    outbound: str
    skip_reason: str


# ── LLM builder ──────────────────────────────────────────────────────


def _build_llm() -> ChatOpenAI:
    """OpenAI-compatible chat-completions client.

    ``max_retries=0``: a failed call aborts the reply; the customer's next
    message replays the full context anyway.
    """
    return ChatOpenAI(
        model=MODEL_NAME,
        api_key=LLM_API_KEY,
        base_url=LLM_BASE_URL,
        max_tokens=LLM_MAX_TOKENS,
        temperature=LLM_TEMPERATURE,
        timeout=REQUEST_TIMEOUT_SECONDS,
        max_retries=0,
    )


def _default_gateway(tenant: Tenant) -> WhatsAppClient:
    return WhatsAppClient.for_tenant(tenant)


# ── History ──────────────────────────────────────────────────────────


def load_history(
    session: Session,
    conversation_id: str,
    *,
    exclude_id: int | None = None,
    limit: int = HISTORY_LIMIT,
) -> list[AnyMessage]:
    """Last *limit* text messages of the conversation, oldest first."""
    query = (
        select(Message)
        .where(
            Message.conversation_id == conversation_id,
            Message.content.is_not(None),
            Message.content != "",
        )
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(limit)
    )
    if exclude_id is not None:
        query = query.where(Message.id != exclude_id)
    rows = list(session.scalars(query))[::-1]

    history: list[AnyMessage] = []
    for row in rows:
        if row.direction == DIRECTION_INBOUND:
            history.append(HumanMessage(content=row.content))
        else:
            history.append(AIMessage(content=row.content))
    return history


def _active_services(session: Session, tenant_id: str) -> list[Service]:
    return list(
        session.scalars(
            select(Service)
            .where(Service.tenant_id == tenant_id, Service.is_active.is_(True))
            .order_by(Service.name)
        )
    )


# ── Node: prepare ────────────────────────────────────────────────────


def _make_prepare_node(session_factory: Callable[[], Session]):
    def prepare_node(state: TurnState) -> dict:
        """Gate on tenant settings and assemble the prompt for this turn."""
        with session_factory() as session:
            tenant = session.get(Tenant, state["tenant_id"])
            if tenant is None:
                return {"skip_reason": "tenant_not_found"}
            if not tenant.bot_enabled:
                logger.debug("Tenant %s: bot disabled, no reply", tenant.id)
                return {"skip_reason": "bot_disabled"}
            if not tenant.has_gateway_credentials:
                logger.info("Tenant %s: missing WhatsApp credentials, no reply", tenant.id)
                return {"skip_reason": "missing_credentials"}
            if not (state.get("text") or "").strip():
                return {"skip_reason": "no_text"}

            contact = session.get(Contact, state["contact_id"])
            now = local_now(tenant)
            knowledge = compile_knowledge(
                tenant,
                _active_services(session, tenant.id),
                occupied_slots(session, tenant.id, now.date()),
                birth_date_unknown=contact is not None and contact.birth_date is None,
                now=now,
            )
            history = load_history(
                session,
                state["conversation_id"],
                exclude_id=state.get("inbound_message_id"),
            )

        return {
            "messages": [
                SystemMessage(content=knowledge),
                *history,
                HumanMessage(content=state["text"]),
            ],
        }

    return prepare_node


# ── Node: generate ───────────────────────────────────────────────────


def _make_generate_node(build_llm: Callable[[], Any]):
    """The LLM client is built once and captured in the closure."""
    llm = build_llm()

    def generate_node(state: TurnState) -> dict:
        """One completion call.  Any failure ends the turn silently."""
        try:
            with metrics.track("llm", "chat_completion"):
                response = llm.invoke(state["messages"])
                content = response.content if isinstance(response.content, str) else ""
                if not content.strip():
                    raise LLMReplyError("LLM returned no content")
        except Exception as exc:
            logger.error(
                "Conversation %s: LLM call failed, no reply sent (%s: %s)",
                state.get("conversation_id"), type(exc).__name__, exc,
            )
            return {"skip_reason": "llm_failed"}

        return {"messages": [response], "reply": content}

    return generate_node


# ── Node: execute ────────────────────────────────────────────────────


def _make_execute_node(session_factory: Callable[[], Session]):
    def execute_node(state: TurnState) -> dict:
        """Apply directives and produce the customer-facing text."""
        parsed = parse_directives(state["reply"])
        with session_factory() as session:
            tenant = session.get(Tenant, state["tenant_id"])
            contact = session.get(Contact, state["contact_id"])
            result = apply_directives(
                session, tenant, contact, parsed, _active_services(session, tenant.id),
            )
        return {"outbound": result.text}

    return execute_node


# ── Node: deliver ────────────────────────────────────────────────────


def _make_deliver_node(
    session_factory: Callable[[], Session],
    gateway_factory: GatewayFactory,
):
    def deliver_node(state: TurnState) -> dict:
        """Persist, send, refresh preview.

        The outbound row is stored as ``sent`` before the push; a failed
        push is logged and leaves the row and any directive effects in
        place.
        """
        text = state["outbound"]
        now = utcnow()
        with session_factory() as session:
            tenant = session.get(Tenant, state["tenant_id"])
            message = Message(
                tenant_id=tenant.id,
                conversation_id=state["conversation_id"],
                contact_id=state["contact_id"],
                direction=DIRECTION_OUTBOUND,
                content=text,
                message_type="text",
                is_bot_response=True,
                status=MESSAGE_SENT,
                created_at=now,
            )
            session.add(message)
            session.commit()

            try:
                with gateway_factory(tenant) as gateway:
                    response = gateway.send_text(state["sender"], text)
                message.whatsapp_message_id = message_id_from(response)
                session.commit()
            except Exception:
                logger.exception(
                    "Conversation %s: WhatsApp send failed (message kept as sent)",
                    state["conversation_id"],
                )

            touch_conversation(session, state["conversation_id"], text, now)
        return {}

    return deliver_node


# ── Conditional edges ────────────────────────────────────────────────


def continue_unless_skipped(state: TurnState) -> str:
    """Route to END when a node set ``skip_reason``."""
    if state.get("skip_reason"):
        return END
    return "next"


# ── Graph assembly ───────────────────────────────────────────────────


def create_conversation_engine(
    session_factory: Callable[[], Session] = SessionLocal,
    *,
    build_llm: Callable[[], Any] = _build_llm,
    gateway_factory: GatewayFactory = _default_gateway,
):
    """Build and compile the per-message engine.

    Invoke with the ids produced by the inbox::

        engine.invoke({
            "tenant_id": ..., "contact_id": ..., "conversation_id": ...,
            "inbound_message_id": ..., "sender": "5511999990000",
            "text": "Oi, quero marcar um corte",
        })
    """
    graph = StateGraph(TurnState)

    graph.add_node("prepare", _make_prepare_node(session_factory))
    graph.add_node("generate", _make_generate_node(build_llm))
    graph.add_node("execute", _make_execute_node(session_factory))
    graph.add_node("deliver", _make_deliver_node(session_factory, gateway_factory))

    graph.set_entry_point("prepare")
    graph.add_conditional_edges(
        "prepare", continue_unless_skipped, {"next": "generate", END: END},
    )
    graph.add_conditional_edges(
        "generate", continue_unless_skipped, {"next": "execute", END: END},
    )
    graph.add_edge("execute", "deliver")
    graph.add_edge("deliver", END)

    compiled = graph.compile()
    logger.debug("Conversation engine compiled — model: %s", MODEL_NAME)
    return compiled
