"""Ledger store: per-(event, user) virtual balances.

Balances are only ever changed through the functions here. Writers never
read a balance, compute a new value in Python and write it back; every
mutation is a single conditional UPDATE so two concurrent requests cannot
both spend the same money.
"""
from __future__ import annotations

import logging

from sqlalchemy import exists, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from demoday.errors import Internal
from demoday.models import PITCHING, Balance, Event

log = logging.getLogger(__name__)


def get_balance(session: Session, event_id: int, user_id: str) -> Balance | None:
    return session.execute(
        select(Balance).where(Balance.event_id == event_id, Balance.user_id == user_id)
    ).scalars().first()


def list_angel_balances(session: Session, event_id: int) -> list[Balance]:
    return list(session.execute(
        select(Balance)
        .where(Balance.event_id == event_id, Balance.is_angel.is_(True))
        .order_by(Balance.id)
    ).scalars().all())


def grant(session: Session, event_id: int, user_id: str, amount_cents: int) -> Balance:
    """Give *user_id* an angel balance of *amount_cents* and commit.

    Tries an INSERT first. If another request created the row in between
    (uniqueness conflict), rolls back and flips the existing row to an angel
    balance instead, but only if it is not one already, so a balance that
    has started investing is never reset. Both paths end in the same row.
    """
    session.add(Balance(
        event_id=event_id, user_id=user_id,
        initial_balance=amount_cents, remaining_balance=amount_cents,
        is_angel=True,
    ))
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        log.info("Balance for user %s in event %s already exists, upgrading", user_id, event_id)
        session.execute(
            update(Balance)
            .where(
                Balance.event_id == event_id,
                Balance.user_id == user_id,
                Balance.is_angel.is_(False),
            )
            .values(initial_balance=amount_cents, remaining_balance=amount_cents, is_angel=True)
            .execution_options(synchronize_session=False)
        )
        session.commit()

    balance = get_balance(session, event_id, user_id)
    if balance is None:
        log.error("Balance for user %s in event %s missing after grant", user_id, event_id)
        raise Internal(f"Balance for user {user_id} in event {event_id} missing after grant")
    session.refresh(balance)
    return balance


def debit(session: Session, balance_id: int, amount_cents: int) -> bool:
    """Atomically subtract *amount_cents* if enough is left.

    Returns False when the guard fails: not an open angel balance, the
    event is no longer pitching, or ``remaining_balance < amount_cents``.
    Does not commit; the caller owns the transaction so the debit and the
    investment row land together.
    """
    result = session.execute(
        update(Balance)
        .where(
            Balance.id == balance_id,
            Balance.is_angel.is_(True),
            Balance.final_balance.is_(None),
            Balance.remaining_balance >= amount_cents,
            exists().where(Event.id == Balance.event_id, Event.status == PITCHING),
        )
        .values(remaining_balance=Balance.remaining_balance - amount_cents)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def settle(session: Session, final_balances: dict[str, int], event_id: int) -> None:
    """Write final balances (cents) computed by the results calculation.

    Does not commit.
    """
    for user_id, final in final_balances.items():
        session.execute(
            update(Balance)
            .where(Balance.event_id == event_id, Balance.user_id == user_id)
            .values(final_balance=final)
        )
