"""Pydantic schemas for rate limit check requests and decisions."""

from __future__ import annotations

from pydantic import BaseModel, Field

from ratelimit_api.services.limiter import LimitDecision


class LimitCheckRequest(BaseModel):
    """A request to consume one unit of a caller-defined fixed window."""

    key: str = Field(
        ...,
        min_length=1,
        max_length=256,
        description=(
            "Opaque limiting key chosen by the caller (e.g. 'user:42' or "
            "'user:42:POST:/orders'). Scoped to the calling identity."
        ),
    )
    limit: int = Field(
        ...,
        ge=0,
        description="Maximum requests allowed per window. 0 rejects every request.",
    )
    window_seconds: int = Field(
        ...,
        ge=1,
        description="Fixed window length in seconds.",
    )


class LimitDecisionResponse(BaseModel):
    """Admit/reject decision with quota telemetry."""

    allowed: bool = Field(..., description="Whether this request is within quota.")
    limit: int = Field(..., description="Maximum requests per window.")
    remaining: int = Field(..., ge=0, description="Requests left in the current window.")
    reset_seconds: int = Field(..., ge=0, description="Seconds until the window resets.")

    @classmethod
    def from_decision(cls, decision: LimitDecision) -> "LimitDecisionResponse":
        return cls(
            allowed=decision.allowed,
            limit=decision.limit,
            remaining=decision.remaining,
            reset_seconds=decision.reset_seconds,
        )
