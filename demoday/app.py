from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from demoday import services
from demoday.config import get_settings
from demoday.db import init_db, session_generator
from demoday.errors import DemodayError, Internal
from demoday.exporter import export_results_xlsx
from demoday.schemas import (
    BalanceOut,
    CalculateRequest,
    ErrorOut,
    EventDetails,
    EventOut,
    IdeaOut,
    InvestmentCreate,
    InvestmentOut,
    PitchCreate,
    PitchOut,
    ResultsOut,
)

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="Demoday",
    version="0.1.0",
    description=(
        "Monthly Demoday pitch-and-virtual-funding API for the NS Collab community. "
        "Members register as angels, invest a virtual balance into pitches, and the host "
        "ranks pitches and settles returns. The caller is identified by the X-User-Id "
        "header set by the upstream auth proxy."
    ),
    lifespan=lifespan,
    responses={
        403: {"model": ErrorOut},
        404: {"model": ErrorOut},
        409: {"model": ErrorOut},
    },
    openapi_tags=[
        {"name": "Events", "description": "Monthly demodays, details, and the pitching phase."},
        {"name": "Pitches", "description": "Submit and withdraw pitches."},
        {"name": "Funding", "description": "Angel registration, balances, and investments."},
        {"name": "Results", "description": "Rankings, returns, and exports."},
    ],
)


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


db_session = session_generator


def current_user(x_user_id: str | None = Header(None)) -> str:
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(401, "Sign in to continue")
    return user_id


@app.exception_handler(DemodayError)
async def demoday_error_handler(request: Request, exc: DemodayError):
    if isinstance(exc, Internal):
        # Cause already logged by the service.
        body = ErrorOut(detail=Internal.__doc__, code=exc.code)
    else:
        body = ErrorOut(detail=exc.message, code=exc.code)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


# ---------------------------------------------------------------------------
# Routes: Events
# ---------------------------------------------------------------------------


@app.get("/api/events", response_model=list[EventOut],
         tags=["Events"], summary="Current and next month's demodays (created on first view)")
async def list_events(session: Session = Depends(db_session)):
    return [services.event_summary(e) for e in services.list_events(session)]


@app.get("/api/events/{event_id}", response_model=EventOut,
         tags=["Events"], summary="Get a single demoday")
async def get_event(event_id: int, session: Session = Depends(db_session)):
    return services.event_summary(services.get_event(session, event_id))


@app.put("/api/events/{event_id}/details", response_model=EventOut,
         tags=["Events"], summary="Edit when/where/what (claims the host role if unclaimed)")
async def update_details(event_id: int, body: EventDetails,
                         user_id: str = Depends(current_user), session: Session = Depends(db_session)):
    event = services.update_details(session, event_id, user_id, body.model_dump())
    return services.event_summary(event)


@app.post("/api/events/{event_id}/start", response_model=EventOut,
          tags=["Events"], summary="Host: open the pitching and funding phase")
async def start_pitching(event_id: int, user_id: str = Depends(current_user),
                         session: Session = Depends(db_session)):
    return services.event_summary(services.start_pitching(session, event_id, user_id))


# ---------------------------------------------------------------------------
# Routes: Pitches
# ---------------------------------------------------------------------------


@app.get("/api/events/{event_id}/pitches", response_model=list[PitchOut],
         tags=["Pitches"], summary="List pitches in submission order")
async def list_pitches(event_id: int, session: Session = Depends(db_session)):
    return services.list_pitches(session, event_id)


@app.post("/api/events/{event_id}/pitches", response_model=PitchOut, status_code=201,
          tags=["Pitches"], summary="Submit one of your ideas as this month's pitch")
async def submit_pitch(event_id: int, body: PitchCreate, user_id: str = Depends(current_user),
                       session: Session = Depends(db_session)):
    pitch = services.submit_pitch(session, event_id, user_id, body.idea_id)
    return services.pitch_detail(session, pitch)


@app.delete("/api/pitches/{pitch_id}", tags=["Pitches"], summary="Withdraw your pitch")
async def cancel_pitch(pitch_id: int, user_id: str = Depends(current_user),
                       session: Session = Depends(db_session)):
    services.cancel_pitch(session, pitch_id, user_id)
    return {"ok": True}


@app.get("/api/ideas/mine", response_model=list[IdeaOut],
         tags=["Pitches"], summary="Ideas you own or are a member of")
async def my_ideas(user_id: str = Depends(current_user), session: Session = Depends(db_session)):
    return [services.idea_summary(i) for i in services.list_pitchable_ideas(session, user_id)]


# ---------------------------------------------------------------------------
# Routes: Funding
# ---------------------------------------------------------------------------


@app.post("/api/events/{event_id}/angels", response_model=BalanceOut,
          tags=["Funding"], summary="Register as an angel investor (idempotent)")
async def register_angel(event_id: int, user_id: str = Depends(current_user),
                         session: Session = Depends(db_session)):
    return services.balance_summary(services.register_angel(session, event_id, user_id))


@app.get("/api/events/{event_id}/balance", response_model=BalanceOut,
         tags=["Funding"], summary="Your balance for this demoday")
async def get_balance(event_id: int, user_id: str = Depends(current_user),
                      session: Session = Depends(db_session)):
    return services.balance_summary(services.get_balance(session, event_id, user_id))


@app.get("/api/events/{event_id}/investments", response_model=list[InvestmentOut],
         tags=["Funding"], summary="Your investments in this demoday")
async def list_investments(event_id: int, user_id: str = Depends(current_user),
                           session: Session = Depends(db_session)):
    return [services.investment_summary(i) for i in services.list_investments(session, event_id, user_id)]


@app.post("/api/events/{event_id}/investments", response_model=BalanceOut,
          tags=["Funding"], summary="Invest part of your balance into a pitch")
async def invest(event_id: int, body: InvestmentCreate, user_id: str = Depends(current_user),
                 session: Session = Depends(db_session)):
    balance = services.invest(session, event_id, user_id, body.pitch_id, body.amount)
    return services.balance_summary(balance)


# ---------------------------------------------------------------------------
# Routes: Results
# ---------------------------------------------------------------------------


@app.post("/api/events/{event_id}/results", response_model=ResultsOut,
          tags=["Results"], summary="Host: rank pitches, settle balances, and end the demoday")
async def calculate_results(event_id: int, body: CalculateRequest | None = None,
                            user_id: str = Depends(current_user), session: Session = Depends(db_session)):
    force = bool(body and body.force)
    snapshot = services.calculate_results(session, event_id, user_id, force=force)
    return services.results_summary(snapshot)


@app.get("/api/events/{event_id}/results", response_model=ResultsOut,
         tags=["Results"], summary="Rankings and returns for a completed demoday")
async def get_results(event_id: int, session: Session = Depends(db_session)):
    return services.results_summary(services.get_results(session, event_id))


@app.get("/api/events/{event_id}/results/export", tags=["Results"],
         summary="Download rankings as an XLSX workbook")
async def export_results(event_id: int, session: Session = Depends(db_session)):
    event = services.get_event(session, event_id)
    content = export_results_xlsx(services.results_summary(services.get_results(session, event_id)))
    filename = f"demoday-{event.event_date:%Y-%m}-results.xlsx"
    return Response(
        content=content,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    uvicorn.run("demoday.app:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
