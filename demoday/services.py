"""Shared business logic for the Demoday API and MCP server.

Every public operation is one unit of work: it validates its inputs, writes,
and commits or rolls back its own transaction. Anything the caller should
see is raised as a :class:`demoday.errors.DemodayError` subclass.
"""
from __future__ import annotations

import json
import logging
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, exists, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from demoday import ledger, ranking
from demoday.config import get_settings
from demoday.errors import (
    AlreadyCalculated, Conflict, InsufficientFunds, Internal, NoPitches,
    NotAnAngel, NotFound, PermissionDenied,
)
from demoday.models import (
    COMPLETED, PITCHING, UPCOMING, Balance, Event, Idea, IdeaMember, Investment, Pitch,
    Profile, ResultsSnapshot,
)
from demoday.utils import add_months, from_cents, json_parse, month_start, to_cents

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Shared field tuples
# ---------------------------------------------------------------------------

DETAIL_FIELDS = ("when", "where", "what", "luma_url")

PITCH_AMOUNT_KEYS = ("total_funding",)

INVESTOR_AMOUNT_KEYS = ("initial_balance", "invested_amount", "returns", "final_balance")


def default_balance_cents() -> int:
    return to_cents(get_settings().default_balance)


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def event_summary(event: Event) -> dict:
    details = json_parse(event.details_json, {})
    return {
        "id": event.id,
        "event_date": event.event_date.isoformat(),
        "status": event.status,
        "details": {k: details.get(k) for k in DETAIL_FIELDS},
        "host_id": event.host_id,
        "created_at": event.created_at.isoformat() if event.created_at else None,
    }


def balance_summary(balance: Balance) -> dict:
    return {
        "id": balance.id, "event_id": balance.event_id, "user_id": balance.user_id,
        "initial_balance": from_cents(balance.initial_balance),
        "remaining_balance": from_cents(balance.remaining_balance),
        "final_balance": from_cents(balance.final_balance),
        "is_angel": balance.is_angel,
    }


def investment_summary(inv: Investment) -> dict:
    return {
        "id": inv.id, "event_id": inv.event_id, "investor_id": inv.investor_id,
        "pitch_id": inv.pitch_id, "amount": from_cents(inv.amount),
        "created_at": inv.created_at.isoformat(),
    }


def profile_fields(profile: Profile | None, user_id: str) -> dict:
    return {
        "id": user_id,
        "full_name": profile.full_name if profile else None,
        "avatar_url": profile.avatar_url if profile else None,
        "discord_username": profile.discord_username if profile else None,
    }


def pitch_summary(pitch: Pitch, profile: Profile | None = None) -> dict:
    return {
        "id": pitch.id, "event_id": pitch.event_id, "idea_id": pitch.idea_id,
        "pitcher_id": pitch.pitcher_id, "submitted_at": pitch.submitted_at.isoformat(),
        "idea": {"id": pitch.idea.id, "title": pitch.idea.title, "description": pitch.idea.description},
        "pitcher": profile_fields(profile, pitch.pitcher_id),
    }


def idea_summary(idea: Idea) -> dict:
    return {"id": idea.id, "title": idea.title, "description": idea.description}


def _amounts_to_units(rows: list[dict], keys: tuple[str, ...]) -> list[dict]:
    return [{**row, **{k: from_cents(row[k]) for k in keys if k in row}} for row in rows]


def results_summary(snapshot: ResultsSnapshot) -> dict:
    return {
        "id": snapshot.id,
        "event_id": snapshot.event_id,
        "calculated_at": snapshot.calculated_at.isoformat(),
        "pitch_rankings": _amounts_to_units(
            json_parse(snapshot.pitch_rankings_json, []), PITCH_AMOUNT_KEYS),
        "investor_rankings": _amounts_to_units(
            json_parse(snapshot.investor_rankings_json, []), INVESTOR_AMOUNT_KEYS),
    }


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def get_entity(session: Session, model, entity_id):
    return session.execute(select(model).where(model.id == entity_id)).scalars().first()


def get_event(session: Session, event_id: int) -> Event:
    event = get_entity(session, Event, event_id)
    if event is None:
        raise NotFound(f"Demoday {event_id} not found")
    return event


def _profiles(session: Session, user_ids: set[str]) -> dict[str, Profile]:
    if not user_ids:
        return {}
    rows = session.execute(select(Profile).where(Profile.id.in_(user_ids))).scalars().all()
    return {p.id: p for p in rows}


def _snapshot_for(session: Session, event_id: int) -> ResultsSnapshot | None:
    return session.execute(
        select(ResultsSnapshot).where(ResultsSnapshot.event_id == event_id)
    ).scalars().first()


def _event_pitches(session: Session, event_id: int) -> list[Pitch]:
    return list(session.execute(
        select(Pitch).where(Pitch.event_id == event_id).order_by(Pitch.submitted_at, Pitch.id)
    ).scalars().all())


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


def ensure_event(session: Session, event_date: date, today: date | None = None) -> Event:
    """Return the demoday for *event_date*'s month, creating it if needed.

    Only the current month and later are ever created; past months must
    already exist.
    """
    month = month_start(event_date)
    current = month_start(today or date.today())
    query = select(Event).where(Event.event_date == month)
    event = session.execute(query).scalars().first()
    if event is not None:
        return event
    if month < current:
        raise NotFound(f"No demoday for {month:%b %Y}")

    session.add(Event(event_date=month, status=UPCOMING, details_json="{}"))
    try:
        session.commit()
        log.info("Created demoday for %s", month.isoformat())
    except IntegrityError:
        # Another request created the same month first.
        session.rollback()
    event = session.execute(query).scalars().first()
    if event is None:
        raise Internal(f"Demoday for {month.isoformat()} could not be created")
    return event


def list_events(session: Session, today: date | None = None) -> list[Event]:
    """Current and next month's demodays, auto-created when missing."""
    current = month_start(today or date.today())
    return [ensure_event(session, month, today) for month in (current, add_months(current, 1))]


def _claim_host(session: Session, event: Event, requester_id: str) -> None:
    """Make *requester_id* the host if the event has none yet.

    Conditional on ``host_id IS NULL`` so two users racing for an unclaimed
    event cannot both win.
    """
    if event.host_id is not None:
        return
    session.execute(
        update(Event)
        .where(Event.id == event.id, Event.host_id.is_(None))
        .values(host_id=requester_id)
        .execution_options(synchronize_session=False)
    )
    session.commit()
    session.refresh(event)
    if event.host_id == requester_id:
        log.info("User %s is now host of demoday %s", requester_id, event.id)


def _require_host(event: Event, requester_id: str, action: str) -> None:
    if event.host_id != requester_id:
        raise PermissionDenied(f"Only the demoday host can {action}")


def update_details(
    session: Session, event_id: int, requester_id: str, details: dict[str, Any],
) -> Event:
    event = get_event(session, event_id)
    _claim_host(session, event, requester_id)
    _require_host(event, requester_id, "edit the details")
    event.details_json = json.dumps({k: (details.get(k) or None) for k in DETAIL_FIELDS})
    session.commit()
    return event


def _transition(session: Session, event: Event, from_status: str, to_status: str) -> bool:
    """Move *event* from one status to the next; False if it was not in *from_status*.

    Does not commit.
    """
    result = session.execute(
        update(Event)
        .where(Event.id == event.id, Event.status == from_status)
        .values(status=to_status)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def start_pitching(session: Session, event_id: int, requester_id: str) -> Event:
    event = get_event(session, event_id)
    if event.host_id is not None:
        _require_host(event, requester_id, "start the demoday")
    if event.status != UPCOMING:
        raise Conflict(f"Demoday is already {event.status}")
    if not _event_pitches(session, event_id):
        raise NoPitches("At least one pitch is needed to start the demoday")

    _claim_host(session, event, requester_id)
    _require_host(event, requester_id, "start the demoday")
    if not _transition(session, event, UPCOMING, PITCHING):
        session.rollback()
        session.refresh(event)
        raise Conflict(f"Demoday is already {event.status}")
    session.commit()
    session.refresh(event)
    log.info("Demoday %s moved to pitching by %s", event_id, requester_id)
    return event


# ---------------------------------------------------------------------------
# Angel registration
# ---------------------------------------------------------------------------


def register_angel(session: Session, event_id: int, user_id: str) -> Balance:
    """Grant *user_id* the default angel balance for the event. Idempotent."""
    event = get_event(session, event_id)
    if event.status == COMPLETED:
        raise PermissionDenied("This demoday has ended")

    existing = ledger.get_balance(session, event_id, user_id)
    if existing is not None and existing.is_angel:
        return existing

    try:
        balance = ledger.grant(session, event_id, user_id, default_balance_cents())
    except SQLAlchemyError as exc:
        session.rollback()
        log.exception("Angel registration failed for user %s in demoday %s", user_id, event_id)
        raise Internal() from exc
    log.info("User %s registered as angel for demoday %s", user_id, event_id)
    return balance


def get_balance(session: Session, event_id: int, user_id: str) -> Balance:
    get_event(session, event_id)
    balance = ledger.get_balance(session, event_id, user_id)
    if balance is None:
        raise NotFound("No balance for this demoday yet")
    return balance


# ---------------------------------------------------------------------------
# Pitches
# ---------------------------------------------------------------------------


def _can_pitch_idea(session: Session, idea: Idea, user_id: str) -> bool:
    if idea.submitter_user_id == user_id:
        return True
    return bool(session.execute(
        select(exists().where(IdeaMember.idea_id == idea.id, IdeaMember.user_id == user_id))
    ).scalar())


def _pitch_of(session: Session, event_id: int, user_id: str) -> Pitch | None:
    return session.execute(
        select(Pitch).where(Pitch.event_id == event_id, Pitch.pitcher_id == user_id)
    ).scalars().first()


def list_pitchable_ideas(session: Session, user_id: str) -> list[Idea]:
    member_of = select(IdeaMember.idea_id).where(IdeaMember.user_id == user_id)
    return list(session.execute(
        select(Idea)
        .where(or_(Idea.submitter_user_id == user_id, Idea.id.in_(member_of)))
        .order_by(Idea.id)
    ).scalars().all())


def submit_pitch(
    session: Session, event_id: int, user_id: str, idea_id: int, today: date | None = None,
) -> Pitch:
    event = get_event(session, event_id)
    if event.status not in (UPCOMING, PITCHING):
        raise PermissionDenied("Pitch submissions are closed for this demoday")
    if event.event_date < month_start(today or date.today()):
        raise PermissionDenied("This demoday is in the past")

    idea = get_entity(session, Idea, idea_id)
    if idea is None:
        raise NotFound(f"Idea {idea_id} not found")
    if not _can_pitch_idea(session, idea, user_id):
        raise PermissionDenied("You can only pitch ideas you own or are a member of")

    already = "You have already submitted a pitch for this demoday"
    if _pitch_of(session, event_id, user_id) is not None:
        raise Conflict(already)

    pitch = Pitch(event_id=event_id, idea_id=idea_id, pitcher_id=user_id)
    session.add(pitch)
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        if _pitch_of(session, event_id, user_id) is not None:
            raise Conflict(already) from exc
        log.exception("Pitch submission failed for user %s in demoday %s", user_id, event_id)
        raise Internal() from exc
    session.refresh(pitch)
    log.info("User %s pitched idea %s for demoday %s", user_id, idea_id, event_id)
    return pitch


def cancel_pitch(session: Session, pitch_id: int, requester_id: str) -> None:
    """Withdraw a pitch. Refused once anyone has invested in it."""
    pitch = get_entity(session, Pitch, pitch_id)
    if pitch is None:
        raise NotFound(f"Pitch {pitch_id} not found")
    if pitch.pitcher_id != requester_id:
        raise PermissionDenied("Only the pitcher can cancel this pitch")
    event = get_event(session, pitch.event_id)
    if event.status == COMPLETED:
        raise PermissionDenied("This demoday has ended")

    invested = exists().where(Investment.pitch_id == pitch_id)
    result = session.execute(
        delete(Pitch)
        .where(Pitch.id == pitch_id, ~invested)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        session.rollback()
        raise Conflict("This pitch has already received investments and can no longer be cancelled")
    session.commit()
    session.expunge(pitch)
    log.info("User %s cancelled pitch %s", requester_id, pitch_id)


def pitch_detail(session: Session, pitch: Pitch) -> dict:
    return pitch_summary(pitch, _profiles(session, {pitch.pitcher_id}).get(pitch.pitcher_id))


def list_pitches(session: Session, event_id: int) -> list[dict]:
    get_event(session, event_id)
    pitches = _event_pitches(session, event_id)
    profiles = _profiles(session, {p.pitcher_id for p in pitches})
    return [pitch_summary(p, profiles.get(p.pitcher_id)) for p in pitches]


# ---------------------------------------------------------------------------
# Investments
# ---------------------------------------------------------------------------


def invest(
    session: Session, event_id: int, investor_id: str, pitch_id: int, amount: Decimal | int | str,
) -> Balance:
    """Move *amount* from the investor's balance into a pitch.

    The balance decrement and the investment row are written in one
    transaction; the decrement only happens if enough money is left at the
    moment of the write, so concurrent investments cannot overspend.
    Returns the balance as stored after the commit.
    """
    cents = to_cents(amount)
    event = get_event(session, event_id)
    if event.status != PITCHING:
        raise PermissionDenied("Investments are only open while the demoday is pitching")
    pitch = get_entity(session, Pitch, pitch_id)
    if pitch is None or pitch.event_id != event_id:
        raise NotFound(f"Pitch {pitch_id} not found in this demoday")
    balance = ledger.get_balance(session, event_id, investor_id)
    if balance is None or not balance.is_angel:
        raise NotAnAngel()

    try:
        debited = ledger.debit(session, balance.id, cents)
        if debited:
            session.add(Investment(
                event_id=event_id, investor_id=investor_id, pitch_id=pitch_id, amount=cents,
            ))
            session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        log.exception(
            "Investment of %s cents by %s into pitch %s (demoday %s) failed, rolled back",
            cents, investor_id, pitch_id, event_id,
        )
        raise Internal() from exc

    if not debited:
        session.rollback()
        session.refresh(event)
        session.refresh(balance)
        if event.status != PITCHING or balance.final_balance is not None:
            log.warning(
                "Investment by %s into pitch %s refused: demoday %s closed meanwhile",
                investor_id, pitch_id, event_id,
            )
            raise PermissionDenied("Investments are only open while the demoday is pitching")
        raise InsufficientFunds(
            f"Insufficient funds: {from_cents(balance.remaining_balance)} remaining, "
            f"{from_cents(cents)} requested"
        )
    session.refresh(balance)
    log.info("User %s invested %s cents into pitch %s", investor_id, cents, pitch_id)
    return balance


def list_investments(session: Session, event_id: int, investor_id: str) -> list[Investment]:
    get_event(session, event_id)
    return list(session.execute(
        select(Investment)
        .where(Investment.event_id == event_id, Investment.investor_id == investor_id)
        .order_by(Investment.created_at, Investment.id)
    ).scalars().all())


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


def compute_outcome(session: Session, event_id: int) -> tuple[ranking.Outcome, list[Pitch]]:
    """Read pitches, investments and angel balances and rank them. Writes nothing."""
    pitches = _event_pitches(session, event_id)
    investments = session.execute(
        select(Investment).where(Investment.event_id == event_id)
    ).scalars().all()
    balances = ledger.list_angel_balances(session, event_id)
    outcome = ranking.compute_outcome(
        [ranking.PitchEntry(p.id, p.submitted_at) for p in pitches],
        [ranking.InvestmentEntry(i.investor_id, i.pitch_id, i.amount) for i in investments],
        [ranking.BalanceEntry(b.user_id, b.initial_balance, b.remaining_balance) for b in balances],
    )
    return outcome, pitches


def _ranking_rows(session: Session, outcome: ranking.Outcome, pitches: list[Pitch]) -> tuple[list[dict], list[dict]]:
    by_id = {p.id: p for p in pitches}
    profiles = _profiles(
        session,
        {p.pitcher_id for p in pitches} | {r.investor_id for r in outcome.investor_rankings},
    )
    pitch_rows = []
    for r in outcome.pitch_rankings:
        pitch = by_id[r.pitch_id]
        who = profile_fields(profiles.get(pitch.pitcher_id), pitch.pitcher_id)
        pitch_rows.append({
            "rank": r.rank, "pitch_id": pitch.id, "idea_id": pitch.idea_id,
            "idea_title": pitch.idea.title, "pitcher_id": pitch.pitcher_id,
            "pitcher_name": who["full_name"], "pitcher_avatar": who["avatar_url"],
            "pitcher_username": who["discord_username"],
            "total_funding": r.total_funding, "multiplier": r.multiplier,
        })
    investor_rows = []
    for r in outcome.investor_rankings:
        who = profile_fields(profiles.get(r.investor_id), r.investor_id)
        investor_rows.append({
            "rank": r.rank, "investor_id": r.investor_id,
            "investor_name": who["full_name"], "investor_avatar": who["avatar_url"],
            "investor_username": who["discord_username"],
            "initial_balance": r.initial_balance, "invested_amount": r.invested_amount,
            "returns": r.returns, "final_balance": r.final_balance,
        })
    return pitch_rows, investor_rows


def calculate_results(
    session: Session, event_id: int, requester_id: str, force: bool = False,
) -> ResultsSnapshot:
    """Rank the event's pitches, settle every angel balance and end the event.

    Only one calculation per event succeeds; later or concurrent attempts
    raise AlreadyCalculated. ``force=True`` replaces an existing snapshot
    and overwrites the final balances it had written.
    """
    event = get_event(session, event_id)
    _require_host(event, requester_id, "calculate results")
    if event.status == UPCOMING:
        raise Conflict("Start the demoday before calculating results")
    existing = _snapshot_for(session, event_id)
    if (existing is not None or event.status == COMPLETED) and not force:
        raise AlreadyCalculated()

    try:
        # Status write first: it closes investing (ledger.debit) and takes the
        # write lock before investments are read.
        if force:
            log.warning(
                "Force-recalculating results for demoday %s (requested by %s), replacing snapshot %s",
                event_id, requester_id, existing.id if existing else None,
            )
            session.execute(
                update(Event).where(Event.id == event_id).values(status=COMPLETED)
                .execution_options(synchronize_session=False)
            )
        elif not _transition(session, event, PITCHING, COMPLETED):
            session.rollback()
            raise AlreadyCalculated()

        outcome, pitches = compute_outcome(session, event_id)
        if not pitches:
            session.rollback()
            raise NoPitches()
        pitch_rows, investor_rows = _ranking_rows(session, outcome, pitches)

        if force:
            session.execute(delete(ResultsSnapshot).where(ResultsSnapshot.event_id == event_id))
        snapshot = ResultsSnapshot(
            event_id=event_id,
            pitch_rankings_json=json.dumps(pitch_rows),
            investor_rankings_json=json.dumps(investor_rows),
        )
        session.add(snapshot)
        ledger.settle(session, outcome.final_balances(), event_id)
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise AlreadyCalculated() from exc
    except SQLAlchemyError as exc:
        session.rollback()
        log.exception("Results calculation failed for demoday %s", event_id)
        raise Internal() from exc

    session.refresh(event)
    session.refresh(snapshot)
    log.info(
        "Results for demoday %s: %d pitches, %d investors",
        event_id, len(pitch_rows), len(investor_rows),
    )
    return snapshot


def get_results(session: Session, event_id: int) -> ResultsSnapshot:
    get_event(session, event_id)
    snapshot = _snapshot_for(session, event_id)
    if snapshot is None:
        raise NotFound("Results for this demoday are not available yet")
    return snapshot

