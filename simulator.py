"""Interactive CLI session simulator — exercise the lifecycle without WhatsApp."""

import asyncio
import logging
import tempfile

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from whatsapp_sessions.database.repository import SessionRepository
from whatsapp_sessions.models.session import Base
from whatsapp_sessions.sessions.auth_state import FileAuthStateStore
from whatsapp_sessions.sessions.controller import SessionLifecycleController
from whatsapp_sessions.sessions.errors import SessionError
from whatsapp_sessions.sessions.validation import ValidationFailure
from whatsapp_sessions.transport.base import DisconnectReason
from whatsapp_sessions.transport.simulated import SimulatedTransport

BLUE = "\033[94m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"
DIM = "\033[2m"
BOLD = "\033[1m"
RESET = "\033[0m"

HELP = f"""{DIM}Commands:
  start [phone]        start the tenant's session
  qr                   simulate a QR challenge
  scan <phone>         simulate scanning the QR with <phone>
  drop <code>          close the connection (401 logout, 408 timeout, 515 restart, ...)
  send <to> <text>     send a text message
  status | list        show the tenant's sessions
  logout               disconnect the tenant's sessions
  metrics              show service counters
  quit{RESET}
"""


async def main() -> None:
    print(f"\n{BOLD}{'=' * 52}")
    print("  📱  WhatsApp Sessions — Lifecycle Simulator")
    print(f"{'=' * 52}{RESET}\n")

    logging.basicConfig(level=logging.WARNING)

    # ── In-memory database and throwaway credential directory ─
    engine = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    auth_dir = tempfile.mkdtemp(prefix="whatsapp_auth_")

    transport = SimulatedTransport()
    controller = SessionLifecycleController(
        transport=transport,
        repository=SessionRepository(async_sessionmaker(engine, expire_on_commit=False)),
        auth_store=FileAuthStateStore(auth_dir),
        retry_delay=1.0,
    )

    tenant = input(f"{YELLOW}Tenant id to simulate [1]: {RESET}").strip() or "1"
    print(HELP)

    while True:
        try:
            line = input(f"{BLUE}{BOLD}tenant {tenant}>{RESET} ").strip()
        except (KeyboardInterrupt, EOFError):
            print(f"\n{DIM}Goodbye!{RESET}")
            break

        if not line:
            continue
        command, *args = line.split(maxsplit=2)
        command = command.lower()

        if command == "quit":
            print(f"{DIM}Goodbye!{RESET}")
            break

        try:
            if command == "start":
                result = await controller.start_session(tenant, args[0] if args else None)
                print(f"{GREEN}{result.session_id}{RESET} → {result.status}")
            elif command == "help":
                print(HELP)
            elif command in ("status", "list"):
                for summary in controller.list_sessions_for_tenant(tenant):
                    print(f"  {summary['session_id']}  {summary['status']}  qr={summary['has_qr']}")
            elif command == "metrics":
                for key, value in controller.metrics.snapshot().items():
                    print(f"  {key}: {value}")
            elif command == "logout":
                count = await controller.disconnect_all_for_tenant(tenant)
                print(f"{GREEN}{count} session(s) disconnected{RESET}")
            elif not transport.connections:
                print(f"{DIM}No connection yet — use 'start' first{RESET}")
            elif command == "qr":
                await transport.latest.issue_qr()
                print(f"QR issued → {_tenant_states(controller, tenant)}")
            elif command == "scan" and args:
                await transport.latest.open(f"{args[0]}:1@s.whatsapp.net")
                print(f"Connected → {_tenant_states(controller, tenant)}")
            elif command == "drop" and args:
                await transport.latest.drop(int(args[0]))
                if int(args[0]) not in (DisconnectReason.LOGGED_OUT, DisconnectReason.TIMED_OUT):
                    print(f"{DIM}Reconnect scheduled…{RESET}")
                    await controller.drain_retries()
                print(f"→ {_tenant_states(controller, tenant) or 'no live session'}")
            elif command == "send" and len(args) == 2:
                sessions = controller.list_sessions_for_tenant(tenant)
                if not sessions:
                    print(f"{RED}No live session{RESET}")
                    continue
                receipt = await controller.send_message(sessions[0]["session_id"], args[0], args[1])
                print(f"{GREEN}Sent{RESET} {receipt}")
            else:
                print(HELP)
        except (ValidationFailure, SessionError) as exc:
            print(f"{RED}{exc}{RESET}")

    await controller.aclose()
    await engine.dispose()


def _tenant_states(controller: SessionLifecycleController, tenant: str) -> str:
    return ", ".join(
        f"{s['session_id']} ({s['status']})" for s in controller.list_sessions_for_tenant(tenant)
    )


if __name__ == "__main__":
    asyncio.run(main())
