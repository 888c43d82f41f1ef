"""Star award models."""

from datetime import datetime
from enum import StrEnum

from pydantic import Field

from skill_progress_sync.models.progress import WireModel, utcnow


class LessonType(StrEnum):
    """Learning modes that can each earn one star per skill."""

    CHAT = "chat"
    SIMULATION = "simulation"


class StarSource(StrEnum):
    SERVER = "server"
    LOCAL = "local"


class StarAward(WireModel):
    """A one-time completion marker, identified by (skill_id, lesson_type)."""

    skill_id: str
    lesson_type: LessonType
    awarded_at: datetime = Field(default_factory=utcnow)

    @property
    def key(self) -> tuple[str, LessonType]:
        return (self.skill_id, self.lesson_type)


class AwardResult(WireModel):
    success: bool
    source: StarSource
    already_awarded: bool
    fallback_reason: str | None = None


class StarCount(WireModel):
    total: int
    detail: list[StarAward] = Field(default_factory=list)
    source: StarSource
    fallback_reason: str | None = None

    @property
    def keys(self) -> set[tuple[str, LessonType]]:
        return {star.key for star in self.detail}


class ServerSyncResult(WireModel):
    attempted: bool
    awarded: int = 0
    total_stars: int | None = None
    fallback_reason: str | None = None


class ReconciliationReport(WireModel):
    """Outcome of one reconciliation pass over the skill catalog."""

    awarded: int = 0
    skipped: int = 0
    failed: list[str] = Field(default_factory=list)
    star_count: StarCount | None = None
    completion_percentage: int = 0


# Remote response bodies


class RemoteAwardResponse(WireModel):
    success: bool = True
    already_awarded: bool = False
    star: StarAward | None = None


class RemoteStarList(WireModel):
    total_stars: int | None = None
    stars: list[StarAward] = Field(default_factory=list)


class RemoteSyncResponse(WireModel):
    success: bool = True
    awarded: int = 0
    total_stars: int | None = None
