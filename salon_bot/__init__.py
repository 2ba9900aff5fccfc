"""Salon WhatsApp Bot — a WhatsApp booking assistant for barbershops and salons.

Architecture Overview
=====================

Every inbound WhatsApp message flows through:

1. **webhook** — verifies the Meta handshake per tenant and extracts the
   first message of a notification.  Always answers 200 to POSTs so Meta
   never enters a retry storm.
2. **inbox** — resolves the tenant, upserts the contact and its single
   active conversation (unique indexes + race-tolerant upserts) and stores
   the inbound message.
3. **engine** — a LangGraph StateGraph: prepare (catalog, occupied slots,
   last 10 turns, compiled knowledge) → generate (one chat-completion
   call) → execute (directives) → deliver (persist + WhatsApp send).

Side effects are requested by the LLM through bracketed directives that are
stripped before the customer sees the reply:
``[AGENDAR:<service>|<YYYY-MM-DD>|<HH:MM>]`` and ``[NASCIMENTO:DD/MM/YYYY]``.

Independently, a daily **birthday job** greets contacts on their birthday,
once per year, during business hours.

Key Design Decisions
--------------------
- **Stateless handlers**: no per-request globals; every unit of work opens
  its own SQLAlchemy session.  Concurrency safety comes from database
  constraints, not locks.
- **No LLM retries**: a failed completion means no reply; the next customer
  message replays the full context.
- **Lenient send bookkeeping**: bot replies are stored as ``sent`` before
  the push, and a failed push does not undo them.
- **Double-booking guard**: occupied slots are listed in the prompt *and* a
  partial unique index on (tenant, date, time) rejects racing inserts.

Package Structure
-----------------
- ``salon_bot/agent.py`` — LangGraph conversation engine
- ``salon_bot/prompts.py`` — knowledge compiler (system prompt)
- ``salon_bot/directives.py`` — directive parser/executor
- ``salon_bot/config.py`` — configuration from env / SSM
- ``salon_bot/server.py`` — FastAPI application
- ``salon_bot/main.py`` — CLI (birthday job, local chat)
- ``salon_bot/api/`` — webhook, operator routes and Pydantic schemas
- ``salon_bot/db/`` — SQLAlchemy models and session factory
- ``salon_bot/services/`` — inbox, availability, birthdays, WhatsApp client, metrics
"""
