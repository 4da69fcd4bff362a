"""
Offline console demo that runs WhatsApp-style conversations without any API keys.

Uses the real pipeline, state machine, orchestrator and loyalty ledger
against an in-memory SQLite database and session store. Location
pricing uses the local gazetteer and health questions fall back to the
menu when no advisory key is configured.

Usage:
    python console_demo.py
    python console_demo.py --scenario booking
    python console_demo.py --scenario referral
"""

import argparse
import asyncio
from typing import Optional

from medipod.app import MediPodApp, build_app
from medipod.config import settings
from medipod.schemas.message_schema import InboundMessage
from medipod.storage.database import create_db_engine
from medipod.storage.session_store import InMemorySessionStore
from medipod.utils import normalize_phone

BLUE = "\033[94m"
GREEN = "\033[92m"
RED = "\033[91m"
DIM = "\033[2m"
RESET = "\033[0m"
BOLD = "\033[1m"

DEMO_USER = "whatsapp:+254712345678"
FRIEND_USER = "whatsapp:+254722000111"


class ConsoleSession:
    """Simulates a WhatsApp conversation in the terminal."""

    SCENARIOS: dict[str, list[tuple[str, str]]] = {
        "booking": [
            (DEMO_USER, "hi"),
            (DEMO_USER, "1"),
            (DEMO_USER, "Westlands"),
            (DEMO_USER, "5"),
            (DEMO_USER, "2"),
            (DEMO_USER, "1"),
            (DEMO_USER, "My name is Amina, I have had stomach pain for two days"),
            (DEMO_USER, "2"),
            (DEMO_USER, "0"),
            (DEMO_USER, "7"),
        ],
        "reschedule": [
            (DEMO_USER, "1"),
            (DEMO_USER, "Kilimani"),
            (DEMO_USER, "1"),
            (DEMO_USER, "1"),
            (DEMO_USER, "mpesa"),
            (DEMO_USER, "skip"),
            (DEMO_USER, "3"),
            (DEMO_USER, "1"),
            (DEMO_USER, "3"),
            (DEMO_USER, "3"),
            (DEMO_USER, "2"),
        ],
        "loyalty": [
            (DEMO_USER, "hi"),
            (DEMO_USER, "6"),
            (DEMO_USER, "1"),
            (DEMO_USER, "0"),
            (DEMO_USER, "5"),
            (DEMO_USER, "3"),
            (DEMO_USER, "5"),
            (DEMO_USER, "8"),
        ],
        "referral": [
            (DEMO_USER, "9"),
            (FRIEND_USER, "hi"),
            (FRIEND_USER, "9"),
            (FRIEND_USER, "redeem {code}"),
            (FRIEND_USER, "0"),
            (FRIEND_USER, "6"),
        ],
        "support": [
            (DEMO_USER, "4"),
            (DEMO_USER, "diabetes"),
            (DEMO_USER, "What should I eat to keep my blood sugar stable?"),
            (DEMO_USER, "0"),
        ],
    }

    MAX_INPUT_LENGTH = 1000

    def __init__(self, app: Optional[MediPodApp] = None) -> None:
        self.app = app or build_app(
            engine=create_db_engine(url="sqlite://"),
            store=InMemorySessionStore(),
        )

    def user_say(self, sender: str, text: str) -> None:
        print(f"\n{BLUE}[{sender}] {RESET}{text}")

    def bot_say(self, text: str) -> None:
        print(f"{GREEN}{BOLD}[MediPod]{RESET} {GREEN}{text}{RESET}")

    def system_log(self, text: str) -> None:
        print(f"{DIM}  >> {text}{RESET}")

    def _banner(self, title: str) -> None:
        print()
        print(f"{BOLD}{'=' * 60}{RESET}")
        print(f"{BOLD}  MEDIPOD BOOKING ASSISTANT - {title}{RESET}")
        print(f"{BOLD}  Business: {settings.business.name}{RESET}")
        print(f"{BOLD}{'=' * 60}{RESET}")

    async def send(self, sender: str, text: str) -> None:
        replies = await self.app.pipeline.handle(InboundMessage(sender=sender, text=text))
        for reply in replies:
            self.bot_say(reply.body)
        session = await self.app.store.get(normalize_phone(sender), extend=False)
        if session is not None:
            self.system_log(f"State: {session.state.value}")

    def _fill(self, text: str) -> str:
        if "{code}" not in text:
            return text
        code = self.app.referrals.latest_code(normalize_phone(DEMO_USER))
        return text.replace("{code}", code.code if code else "MEDI00000000")

    async def run_scenario(self, scenario: str) -> None:
        """Auto-play a pre-scripted scenario for demo purposes."""
        steps = self.SCENARIOS.get(scenario)
        if not steps:
            print(f"{RED}Unknown scenario: {scenario}{RESET}")
            return

        self._banner(f"Scenario: {scenario}")
        for sender, text in steps:
            text = self._fill(text)
            self.user_say(sender, text)
            await self.send(sender, text)

        delivered = getattr(self.app.messenger, "sent", [])
        print(f"\n{BOLD}{'=' * 60}{RESET}")
        print(f"{BOLD}  Scenario '{scenario}' complete.{RESET}")
        print(f"{DIM}  Notifications delivered so far: {len(delivered)}{RESET}")
        print(f"{BOLD}{'=' * 60}{RESET}")
        await self.app.shutdown()

    async def run(self) -> None:
        self._banner("Console Demo")
        print(f"{BOLD}  Type 'quit' to exit{RESET}")

        while True:
            user_input = (await asyncio.to_thread(input, f"\n{BLUE}[You] {RESET}")).strip()
            if not user_input:
                continue
            if user_input.lower() in ("quit", "exit", "q"):
                print(f"\n{DIM}Session ended.{RESET}")
                break
            if len(user_input) > self.MAX_INPUT_LENGTH:
                self.bot_say("That message is too long. Please keep it shorter.")
                continue
            await self.send(DEMO_USER, user_input)

        await self.app.shutdown()


def main() -> None:
    parser = argparse.ArgumentParser(description="Offline console demo")
    parser.add_argument(
        "--scenario",
        choices=sorted(ConsoleSession.SCENARIOS),
        default=None,
        help="Auto-play a pre-scripted scenario instead of interactive mode",
    )
    args = parser.parse_args()

    session = ConsoleSession()
    if args.scenario:
        asyncio.run(session.run_scenario(args.scenario))
    else:
        asyncio.run(session.run())


if __name__ == "__main__":
    main()
