#!/usr/bin/env python3
"""
Setup Verification Script

Checks configuration and connectivity (database, Redis, Google Calendar,
WhatsApp gateway, Claude) before running the API.

Usage:
    python scripts/verify_setup.py
"""

import asyncio
import sys
from datetime import timedelta
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv
load_dotenv()

from app.config import get_settings  # noqa: E402


def print_header(title: str) -> None:
    """Print section header."""
    print(f"\n{'='*60}")
    print(f" {title}")
    print(f"{'='*60}")


def print_result(name: str, success: bool, message: str = "") -> None:
    """Print check result."""
    status = "[PASS]" if success else "[FAIL]"
    color = "\033[92m" if success else "\033[91m"
    reset = "\033[0m"
    msg = f" - {message}" if message else ""
    print(f"  {color}{status}{reset} {name}{msg}")


def mask(value: str) -> str:
    return f"{value[:8]}...{value[-4:]}" if len(value) > 12 else "***"


def check_settings() -> bool:
    """Print the effective scheduling policy."""
    settings = get_settings()
    print_result("Environment", True, settings.app_env)
    print_result(
        "Business time",
        True,
        f"UTC{settings.business_utc_offset_hours:+d}, "
        f"{settings.work_start_hour}h-{settings.work_end_hour}h, "
        f"days {settings.working_days}",
    )
    print_result("Calendar categories", True, settings.calendar_categories)
    print_result(
        "Calendar required for booking",
        True,
        str(settings.require_calendar_for_booking),
    )
    if settings.anthropic_api_key:
        print_result("ANTHROPIC_API_KEY", True, f"Set ({mask(settings.anthropic_api_key)})")
    else:
        print_result("ANTHROPIC_API_KEY", False, "Not set - fallback replies only")
    return True


async def check_database() -> bool:
    """Verify database connection."""
    from app.infra.database import Database

    database = Database()
    try:
        healthy = await database.check_health()
        print_result(
            "Database",
            healthy,
            f"Connected ({database.dialect_name})" if healthy else "Connection failed",
        )
        return healthy
    finally:
        await database.close()


async def check_redis() -> bool:
    """Verify Redis connection (non-critical)."""
    from app.infra.redis import RedisClient

    client = RedisClient()
    try:
        healthy = await client.check_health()
        print_result(
            "Redis",
            healthy,
            "Connection successful" if healthy else "Unavailable (process-local locks)",
        )
        return healthy
    finally:
        await client.close()


async def check_calendar() -> bool:
    """List a day of events on every configured calendar."""
    from app.core.errors import SchedulingError
    from app.core.scheduling.calendar_client import CalendarGateway
    from app.core.scheduling.categories import AgendaType
    from app.core.scheduling.timeutil import utcnow

    gateway = CalendarGateway()
    if not gateway.configured:
        print_result("Google Calendar", False, "GOOGLE_SERVICE_ACCOUNT_KEY not set")
        return False

    now = utcnow()
    ok = True
    try:
        for category in AgendaType:
            calendar_id = gateway.resolve_calendar_id(category=category)
            try:
                events = await gateway.list_events(
                    now, now + timedelta(days=1), category=category
                )
                print_result(
                    f"Calendar {category.value}",
                    True,
                    f"{calendar_id}: {len(events)} event(s) in the next 24h",
                )
            except SchedulingError as e:
                print_result(f"Calendar {category.value}", False, f"{calendar_id}: {e.message}")
                ok = False
    finally:
        await gateway.close()
    return ok


async def check_gateway() -> bool:
    """Check if the WhatsApp gateway is reachable (non-critical)."""
    import httpx

    url = get_settings().whatsapp_gateway_url
    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            response = await client.get(f"{url}/health")
        healthy = response.status_code == 200
        print_result(
            "WhatsApp gateway",
            healthy,
            f"Reachable at {url}" if healthy else f"Responded with {response.status_code}",
        )
        return healthy
    except httpx.HTTPError:
        print_result("WhatsApp gateway", False, f"Not reachable at {url}")
        return False


async def main():
    """Run all verification checks."""
    print("\n" + "="*60)
    print(" Artestofados Scheduling API - Setup Verification")
    print("="*60)

    if not (project_root / ".env").exists():
        print_result(".env file", False, "File not found. Copy .env.example to .env")

    print_header("Configuration")
    check_settings()

    print_header("Service Connections")
    critical_failed = not await check_database()
    await check_redis()
    calendar_ok = await check_calendar()
    if not calendar_ok and get_settings().require_calendar_for_booking:
        critical_failed = True
    await check_gateway()

    print_header("Summary")
    if critical_failed:
        print("\n  \033[91mCRITICAL: Bookings cannot be taken with this setup.\033[0m")
        print()
        return 1

    print("\n  \033[92mReady.\033[0m")
    print("  Create tables with: python scripts/migrate.py")
    print("  Start the API with: uvicorn app.main:app --reload")
    print()
    return 0


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
