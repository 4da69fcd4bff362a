"""
Booking assistant entry point.

Runs the offline console demo or session maintenance against the
configured database and session store.

Usage:
    Console mode:    python main.py console
    Scripted demo:   python main.py console booking
    Purge sessions:  python main.py purge-sessions
    Payment result:  python main.py payment-callback MPESA-1A2B3C4D 0
"""

import asyncio
import logging
import sys
from typing import Optional

from medipod.app import build_app
from medipod.config import settings

logger = logging.getLogger(__name__)


def _run_console_mode(scenario: Optional[str] = None) -> None:
    """Start the offline console demo (no API keys required)."""
    from console_demo import ConsoleSession

    session = ConsoleSession()
    if scenario:
        asyncio.run(session.run_scenario(scenario))
    else:
        asyncio.run(session.run())


async def _purge_sessions() -> int:
    app = build_app(settings)
    try:
        return await app.store.purge_expired()
    finally:
        await app.shutdown()


def _run_purge_mode() -> None:
    removed = asyncio.run(_purge_sessions())
    logger.info("Session purge finished, %d removed", removed)


def _run_payment_callback(reference: str, result_code: str) -> None:
    app = build_app(settings)
    status = app.orchestrator.handle_payment_callback(reference, result_code)
    if status is None:
        logger.error("No payment found for reference %s", reference)
        sys.exit(1)
    logger.info("Payment %s is now %s", reference, status.value)
    app.engine.dispose()


if __name__ == "__main__":
    args = sys.argv[1:]
    mode = args[0] if args else "console"
    if mode == "console":
        _run_console_mode(args[1] if len(args) > 1 else None)
    elif mode == "purge-sessions":
        _run_purge_mode()
    elif mode == "payment-callback" and len(args) == 3:
        _run_payment_callback(args[1], args[2])
    else:
        print(__doc__)
        sys.exit(2)
