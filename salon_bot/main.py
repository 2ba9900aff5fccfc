"""CLI entry point for the salon WhatsApp bot.

Commands:
    salon-bot birthdays                          # run the birthday job once
    salon-bot chat --tenant ID --phone 5511...   # talk to the bot locally

``chat`` runs the real inbound pipeline (database, LLM, directives) but
prints replies instead of sending them through WhatsApp.

Usage:
    uv run python -m salon_bot.main chat --tenant <id> --phone 5511999990000
    uv run python -m salon_bot.main birthdays --debug
"""

from __future__ import annotations

import argparse
import logging
import uuid

from dotenv import load_dotenv

from salon_bot.agent import create_conversation_engine
from salon_bot.db.session import SessionLocal, init_db
from salon_bot.services.birthdays import run_birthday_job
from salon_bot.services.inbox import InboundMessage, receive_message
from salon_bot.services.whatsapp_client import ConsoleGateway

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    root_level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=root_level,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )

    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("salon_bot").setLevel(logging.DEBUG if debug else logging.INFO)


def _run_birthdays() -> None:
    result = run_birthday_job(SessionLocal)
    print(f"Birthday job: {result['status']} — {result['sent']} message(s) sent")


def _run_chat(tenant_id: str, phone: str, name: str | None) -> None:
    print("\n" + "=" * 60)
    print("  Salon WhatsApp Bot - local chat")
    print("=" * 60)
    print(f"  Tenant {tenant_id} · contact {phone}")
    print("  Type your message and press Enter. 'quit' to exit.")
    print("=" * 60 + "\n")

    engine = create_conversation_engine(
        SessionLocal, gateway_factory=lambda _tenant: ConsoleGateway(),
    )

    while True:
        try:
            user_input = input("You: ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nTchau!")
            break

        if not user_input:
            continue
        if user_input.lower() in ("exit", "quit", "q"):
            print("\nTchau!")
            break

        inbound = InboundMessage(
            sender=phone,
            message_id=f"cli-{uuid.uuid4()}",
            message_type="text",
            text=user_input,
            profile_name=name,
        )
        try:
            result = receive_message(SessionLocal, engine, tenant_id, inbound)
            if "error" in result:
                print(f"\n[{result['error']}]\n")
        except KeyboardInterrupt:
            print("\n\nTchau!")
            break
        except Exception as e:
            logger.exception("Error processing message")
            print(f"\n[error: {e}]\n")


def main():
    """Parse arguments and dispatch to a sub-command."""
    parser = argparse.ArgumentParser(description="Salon WhatsApp Bot CLI")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("birthdays", help="Send today's birthday greetings once")

    chat = sub.add_parser("chat", help="Chat with the bot as a WhatsApp contact")
    chat.add_argument("--tenant", required=True, help="Tenant id")
    chat.add_argument("--phone", required=True, help="Contact phone (digits only)")
    chat.add_argument("--name", default=None, help="Profile name for a new contact")

    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)
    init_db()

    if args.command == "birthdays":
        _run_birthdays()
    else:
        _run_chat(args.tenant, args.phone, args.name)


if __name__ == "__main__":
    main()
