"""Skill progress data models."""

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

PATIENT_SIM_WEIGHT = 0.7
CHAT_SIM_WEIGHT = 0.3


def utcnow() -> datetime:
    return datetime.now(UTC)


class WireModel(BaseModel):
    """Base for models exchanged with the progress API (camelCase on the wire)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class CompletedStep(WireModel):
    step_id: str
    completed_at: datetime = Field(default_factory=utcnow)


class PatientSimProgress(WireModel):
    """Interactive step-based simulation state."""

    is_completed: bool = False
    completed_steps: list[CompletedStep] = Field(default_factory=list)
    total_steps: int = 0
    score: float = 0
    best_score: float = 0
    attempts: int = 0
    time_spent: int = 0  # seconds
    last_attempt_at: datetime | None = None

    @field_validator("completed_steps", mode="before")
    @classmethod
    def _accept_bare_step_ids(cls, value):
        if isinstance(value, list):
            return [{"step_id": v} if isinstance(v, str) else v for v in value]
        return value

    @property
    def step_ids(self) -> list[str]:
        return [step.step_id for step in self.completed_steps]

    @property
    def percentage(self) -> float:
        if self.is_completed:
            return 100.0
        if self.total_steps <= 0:
            return 0.0
        return min(100.0, len(self.completed_steps) / self.total_steps * 100)


class ChatSessionEntry(WireModel):
    session_id: str
    rating: int
    duration: int = 0
    completed_at: datetime = Field(default_factory=utcnow)


class ChatSimProgress(WireModel):
    """Conversational practice state."""

    is_completed: bool = False
    sessions_completed: int = 0
    total_sessions: int = 1
    average_rating: float | None = None
    time_spent: int = 0  # seconds
    last_session_at: datetime | None = None
    chat_sessions: list[ChatSessionEntry] = Field(default_factory=list)

    @property
    def percentage(self) -> float:
        if self.is_completed:
            return 100.0
        if self.total_sessions <= 0:
            return 0.0
        return min(100.0, self.sessions_completed / self.total_sessions * 100)


class OverallProgress(WireModel):
    completion_percentage: int = 0
    is_completed: bool = False
    total_time_spent: int = 0
    first_started_at: datetime | None = None
    last_updated_at: datetime | None = None


class SkillProgressRecord(WireModel):
    """Progress of one learner on one skill, across both learning modes."""

    skill_id: str
    patient_sim_progress: PatientSimProgress = Field(default_factory=PatientSimProgress)
    chat_sim_progress: ChatSimProgress = Field(default_factory=ChatSimProgress)
    overall_progress: OverallProgress = Field(default_factory=OverallProgress)

    @property
    def chat_star_eligible(self) -> bool:
        chat = self.chat_sim_progress
        return chat.is_completed or chat.sessions_completed > 0

    @property
    def simulation_star_eligible(self) -> bool:
        return self.patient_sim_progress.is_completed

    def recompute_overall(self) -> None:
        """Refresh the weighted completion and time totals."""
        patient = self.patient_sim_progress
        chat = self.chat_sim_progress
        percentage = round(
            patient.percentage * PATIENT_SIM_WEIGHT + chat.percentage * CHAT_SIM_WEIGHT
        )
        overall = self.overall_progress
        overall.completion_percentage = max(0, min(100, percentage))
        overall.is_completed = overall.completion_percentage == 100
        overall.total_time_spent = patient.time_spent + chat.time_spent
        overall.last_updated_at = utcnow()
        if overall.first_started_at is None:
            overall.first_started_at = overall.last_updated_at

    def apply_patient_sim(
        self,
        total_steps: int,
        completed_steps: list[CompletedStep],
        score: float,
        time_spent: int,
    ) -> None:
        """Record a patient simulation attempt (last write wins for steps)."""
        patient = self.patient_sim_progress
        seen: set[str] = set()
        unique_steps = []
        for step in completed_steps:
            if step.step_id not in seen:
                seen.add(step.step_id)
                unique_steps.append(step)

        patient.total_steps = total_steps
        patient.completed_steps = unique_steps
        patient.score = score
        patient.time_spent += time_spent
        patient.attempts += 1
        patient.last_attempt_at = utcnow()
        if score > patient.best_score:
            patient.best_score = score
        patient.is_completed = total_steps > 0 and len(unique_steps) >= total_steps
        self.recompute_overall()

    def apply_chat_sim(self, session_id: str, rating: int, duration: int) -> None:
        """Record a completed chat session and its rating."""
        chat = self.chat_sim_progress
        chat.chat_sessions.append(
            ChatSessionEntry(session_id=session_id, rating=rating, duration=duration)
        )
        chat.sessions_completed += 1
        chat.time_spent += duration
        chat.last_session_at = utcnow()
        chat.average_rating = sum(s.rating for s in chat.chat_sessions) / len(chat.chat_sessions)
        chat.is_completed = chat.sessions_completed >= chat.total_sessions
        self.recompute_overall()


class SkillSummaryRow(WireModel):
    skill_id: str
    completion_percentage: int = 0
    is_completed: bool = False
    last_updated: datetime | None = None
    patient_sim_completed: bool = False
    chat_sim_completed: bool = False


class ProgressSummary(WireModel):
    """Per-learner roll-up returned by GET /progress/summary."""

    total_skills: int = 0
    completed_skills: int = 0
    in_progress_skills: int = 0
    total_time_spent: int = 0
    average_completion_percentage: int = 0
    skills_progress: list[SkillSummaryRow] = Field(default_factory=list)

    @property
    def skill_ids(self) -> set[str]:
        return {row.skill_id for row in self.skills_progress}


class LeaderboardEntry(WireModel):
    learner_id: str
    best_score: float = 0
    total_time_spent: int = 0
    last_updated_at: datetime | None = None


class SkillStatistics(WireModel):
    skill_id: str
    total_users: int = 0
    completed_users: int = 0
    completion_rate: float = 0.0
    average_score: float | None = None
    average_time_spent: float | None = None
    average_chat_rating: float | None = None
