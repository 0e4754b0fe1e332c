"""Pydantic request/response schemas for the Demoday API."""
from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field, field_validator


class EventDetails(BaseModel):
    when: str | None = None
    where: str | None = None
    what: str | None = None
    luma_url: str | None = None

    @field_validator("luma_url")
    @classmethod
    def url_must_be_http(cls, v: str | None) -> str | None:
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("luma_url must be an http(s) URL")
        return v


class EventOut(BaseModel):
    id: int
    event_date: str
    status: str
    details: EventDetails
    host_id: str | None = None
    created_at: str | None = None


class BalanceOut(BaseModel):
    id: int
    event_id: int
    user_id: str
    initial_balance: Decimal
    remaining_balance: Decimal
    final_balance: Decimal | None = None
    is_angel: bool


class IdeaOut(BaseModel):
    id: int
    title: str
    description: str = ""


class PitcherOut(BaseModel):
    id: str
    full_name: str | None = None
    avatar_url: str | None = None
    discord_username: str | None = None


class PitchOut(BaseModel):
    id: int
    event_id: int
    idea_id: int
    pitcher_id: str
    submitted_at: str
    idea: IdeaOut
    pitcher: PitcherOut


class PitchCreate(BaseModel):
    idea_id: int


class InvestmentCreate(BaseModel):
    pitch_id: int
    # Validated by services.invest (positive, at most two decimals).
    amount: Decimal


class InvestmentOut(BaseModel):
    id: int
    event_id: int
    investor_id: str
    pitch_id: int
    amount: Decimal
    created_at: str


class CalculateRequest(BaseModel):
    force: bool = Field(False, description="Replace existing results. Destructive.")


class PitchRankingOut(BaseModel):
    rank: int
    pitch_id: int
    idea_id: int
    idea_title: str
    pitcher_id: str
    pitcher_name: str | None = None
    pitcher_avatar: str | None = None
    pitcher_username: str | None = None
    total_funding: Decimal
    multiplier: int


class InvestorRankingOut(BaseModel):
    rank: int
    investor_id: str
    investor_name: str | None = None
    investor_avatar: str | None = None
    investor_username: str | None = None
    initial_balance: Decimal
    invested_amount: Decimal
    returns: Decimal
    final_balance: Decimal


class ResultsOut(BaseModel):
    id: int
    event_id: int
    calculated_at: str
    pitch_rankings: list[PitchRankingOut]
    investor_rankings: list[InvestorRankingOut]


class ErrorOut(BaseModel):
    detail: str
    code: str
