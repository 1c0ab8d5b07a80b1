"""Pydantic schemas for the gap analysis discussed in a conversation."""

from pydantic import BaseModel, Field

MAX_EXTRAS = 10


class Gap(BaseModel):
    title: str
    description: str = ""
    score: float | None = Field(default=None, ge=0)


class Competitor(BaseModel):
    name: str
    description: str = ""
    score: float | None = Field(default=None, ge=0)


class Phase(BaseModel):
    name: str
    description: str = ""
    steps: list[str] = Field(default_factory=list)


class ActionPlan(BaseModel):
    summary: str = ""
    phases: list[Phase] = Field(default_factory=list)


class ExtraField(BaseModel):
    key: str
    value: str


class AnalysisSnapshot(BaseModel):
    """Read-only snapshot of a market gap analysis.

    Gaps and competitors are ranked by ``score``; anything the analysis carries
    beyond the fixed fields goes into the bounded ``extras`` list.
    """

    id: str
    search_query: str
    innovation_score: float | None = Field(default=None, ge=0, le=100)
    feasibility_rating: str | None = None
    gaps: list[Gap] = Field(default_factory=list)
    competitors: list[Competitor] = Field(default_factory=list)
    action_plan: ActionPlan | None = None
    extras: list[ExtraField] = Field(default_factory=list, max_length=MAX_EXTRAS)

    model_config = {"frozen": True}
