from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP

from demoday import services
from demoday.db import init_db, session_scope
from demoday.errors import DemodayError, Internal
from demoday.ranking import MULTIPLIERS

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def demoday_lifespan(server: FastMCP) -> AsyncIterator[None]:
    init_db()
    yield


mcp = FastMCP(
    "Demoday",
    instructions=(
        "Demoday runs the NS Collab monthly pitch event with virtual funding. "
        "Start with list_events() to find the current demoday, then list_pitches(event_id). "
        "Every write tool takes the acting user's id explicitly."
    ),
    lifespan=demoday_lifespan,
    json_response=True,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _jsonable(data):
    """Decimals and dates as strings, the way the HTTP API renders them."""
    return json.loads(json.dumps(data, default=str))


def _error(exc: DemodayError) -> dict:
    if isinstance(exc, Internal):
        return {"error": Internal.__doc__, "code": exc.code}
    return {"error": exc.message, "code": exc.code}


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("demoday://overview")
def demoday_overview() -> str:
    """Overview of Demoday: lifecycle, balances, and the reward table."""
    return json.dumps({
        "system": "Demoday: monthly pitch event with virtual angel funding",
        "lifecycle": [
            "upcoming: members submit one pitch each (an idea they own or are a member of).",
            "pitching: members register as angels and invest their virtual balance into pitches.",
            "completed: the host calculated results; balances are settled and read-only.",
        ],
        "balances": "Each angel receives the default balance once per demoday. Amounts have 2 decimals.",
        "multipliers_by_rank": {str(rank): f"{m}x" for rank, m in MULTIPLIERS.items()},
        "ranks_beyond_5": "0x (the invested amount is lost)",
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools: Events & pitches
# ---------------------------------------------------------------------------


@mcp.tool()
def list_events() -> list[dict]:
    """List the current and next month's demodays (created on first view)."""
    with session_scope() as session:
        return [services.event_summary(e) for e in services.list_events(session)]


@mcp.tool()
def list_pitches(event_id: int) -> list[dict] | dict:
    """List the pitches of a demoday in submission order with idea and pitcher info."""
    with session_scope() as session:
        try:
            return services.list_pitches(session, event_id)
        except DemodayError as exc:
            return _error(exc)


@mcp.tool()
def start_pitching(event_id: int, user_id: str) -> dict:
    """Open the pitching and funding phase. Only the host (or the first claimer) may do this."""
    with session_scope() as session:
        try:
            return services.event_summary(services.start_pitching(session, event_id, user_id))
        except DemodayError as exc:
            return _error(exc)


# ---------------------------------------------------------------------------
# Tools: Funding
# ---------------------------------------------------------------------------


@mcp.tool()
def register_angel(event_id: int, user_id: str) -> dict:
    """Register a user as an angel investor for a demoday. Safe to call twice."""
    with session_scope() as session:
        try:
            return _jsonable(services.balance_summary(services.register_angel(session, event_id, user_id)))
        except DemodayError as exc:
            return _error(exc)


@mcp.tool()
def invest(event_id: int, user_id: str, pitch_id: int, amount: str) -> dict:
    """Invest part of a user's balance into a pitch.

    Args:
        event_id: The demoday.
        user_id: The investing angel.
        pitch_id: The pitch to fund; must belong to the demoday.
        amount: Decimal string with at most 2 decimals, e.g. "250000.50".
    """
    with session_scope() as session:
        try:
            return _jsonable(services.balance_summary(services.invest(session, event_id, user_id, pitch_id, amount)))
        except DemodayError as exc:
            return _error(exc)


@mcp.tool()
def get_balance(event_id: int, user_id: str) -> dict:
    """Get a user's balance for a demoday."""
    with session_scope() as session:
        try:
            return _jsonable(services.balance_summary(services.get_balance(session, event_id, user_id)))
        except DemodayError as exc:
            return _error(exc)


# ---------------------------------------------------------------------------
# Tools: Results
# ---------------------------------------------------------------------------


@mcp.tool()
def calculate_results(event_id: int, user_id: str, force: bool = False) -> dict:
    """Rank pitches, settle balances, and end the demoday. Host only.

    ``force`` replaces already calculated results and is destructive.
    """
    with session_scope() as session:
        try:
            snapshot = services.calculate_results(session, event_id, user_id, force=force)
            return _jsonable(services.results_summary(snapshot))
        except DemodayError as exc:
            return _error(exc)


@mcp.tool()
def get_results(event_id: int) -> dict:
    """Get the rankings and returns of a completed demoday."""
    with session_scope() as session:
        try:
            return _jsonable(services.results_summary(services.get_results(session, event_id)))
        except DemodayError as exc:
            return _error(exc)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the Demoday MCP server over stdio."""
    mcp.run()


if __name__ == "__main__":
    main()
