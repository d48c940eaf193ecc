"""CLI entry point for the call-center router.

A terminal chat loop for trying the router without the web server.

Usage:
    python -m callcenter.main                    # quiet, fresh session
    python -m callcenter.main --debug            # show routing and LLM calls
    python -m callcenter.main --session demo-1   # continue a named session

Commands inside the loop: ``new``, ``session``, ``agents``, ``quit``.
"""

from __future__ import annotations

import argparse
import json
import logging
import uuid

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

BANNER_WIDTH = 60
EXIT_COMMANDS = frozenset({"exit", "quit", "q"})


def _configure_logging(debug: bool = False) -> None:
    """Quiet by default; ``--debug`` shows every routing decision and LLM call."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )
    if not debug:
        for noisy in ("httpx", "httpcore", "anthropic"):
            logging.getLogger(noisy).setLevel(logging.WARNING)
    logging.getLogger("callcenter").setLevel(logging.DEBUG if debug else logging.WARNING)


def _print_banner(session_id: str) -> None:
    rule = "=" * BANNER_WIDTH
    print(f"\n{rule}\n  City General Hospital - Call Center Chat\n{rule}")
    print("  Commands: 'new' new session, 'session' show state,")
    print("            'agents' list agents, 'quit' exit.")
    print(f"  Session: {session_id}\n{rule}\n")


def _print_slots(slots: list[dict]) -> None:
    for slot in slots:
        print(f"   [{slot['id']}] {slot['formatted']}")
    if slots:
        print()


def _print_session(dispatcher, session_id: str) -> None:
    session = dispatcher.get_session(session_id)
    if session is None:
        print("\n(no messages in this session yet)\n")
        return
    print(f"\nactive agent: {session.active_agent}  turns: {len(session.history)}")
    print(json.dumps(session.context, indent=2, default=str), "\n")


def _print_agents(dispatcher) -> None:
    info = dispatcher.routing_info()
    print(f"\nrouting: {info['routing_method']} (router model {info['router_model']})")
    for agent in info["agents"]:
        print(f"  {agent['name']:<12} {agent['description']}")
    print()


def main():
    """Run the interactive CLI chat loop."""
    parser = argparse.ArgumentParser(description="City General call-center CLI")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including routing decisions",
    )
    parser.add_argument("--session", help="Session id to use instead of a random one")
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    # Imported after logging is configured so module-level setup logs show
    from callcenter.dispatcher import create_dispatcher

    dispatcher = create_dispatcher()
    session_id = args.session or uuid.uuid4().hex
    _print_banner(session_id)

    while True:
        try:
            user_input = input("You: ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nGoodbye!")
            break

        command = user_input.lower()
        if not user_input:
            continue
        if command in EXIT_COMMANDS:
            print("\nThank you for calling City General. Goodbye!")
            break
        if command == "new":
            session_id = uuid.uuid4().hex
            logger.info("Switched to session %s", session_id)
            print(f"\n>> New session: {session_id}\n")
            continue
        if command == "session":
            _print_session(dispatcher, session_id)
            continue
        if command == "agents":
            _print_agents(dispatcher)
            continue

        result = dispatcher.turn(user_input, session_id)
        print(f"\n[{result.agent}] {result.message}\n")
        _print_slots(result.slots)


if __name__ == "__main__":
    main()
