from pydantic import BaseModel, Field
from typing import Literal

GoalType = Literal["session", "daily"]

class StudyGoal(BaseModel):
    type: GoalType
    target: int = Field(gt=0)

class StudyProgress(BaseModel):
    goal: StudyGoal
    progress: int = 0
    date: str  # ISO date the progress counter belongs to
