"""REST routes of the reference progress server."""

from collections import defaultdict

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from pydantic import Field

from skill_progress_sync.achievements.reconcile import eligible_lessons
from skill_progress_sync.config import Settings
from skill_progress_sync.models.achievement import LessonType
from skill_progress_sync.models.progress import (
    ChatSimProgress,
    CompletedStep,
    LeaderboardEntry,
    PatientSimProgress,
    ProgressSummary,
    SkillProgressRecord,
    SkillStatistics,
    SkillSummaryRow,
    WireModel,
)
from skill_progress_sync.storage.progress_repository import ProgressRepository

logger = structlog.get_logger()
router = APIRouter(prefix="/progress")


class InitializeRequest(WireModel):
    total_steps: int = Field(ge=1)
    total_chat_sessions: int = Field(default=1, ge=1)


class PatientSimRequest(WireModel):
    total_steps: int = Field(ge=1)
    completed_steps: list[CompletedStep]
    score: float = Field(ge=0, le=100)
    time_spent: int = Field(ge=0)


class ChatSimRequest(WireModel):
    session_id: str = Field(min_length=1)
    rating: int = Field(ge=1, le=5)
    duration: int = Field(ge=0)


class AwardRequest(WireModel):
    skill_id: str = Field(min_length=1)
    lesson_type: LessonType


def get_repository(request: Request) -> ProgressRepository:
    return request.app.state.repository


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_learner_id(authorization: str | None = Header(default=None)) -> str:
    """Identify the learner by the opaque bearer credential of the session."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing session credential")
    token = authorization[len("bearer "):].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Missing session credential")
    return token


def require_star_endpoints(settings: Settings = Depends(get_app_settings)) -> None:
    # Deployments without the star feature answer like an unknown route
    if not settings.enable_star_endpoints:
        raise HTTPException(status_code=404, detail="Not Found")


def _new_record(skill_id: str, total_steps: int = 0, total_sessions: int = 1) -> SkillProgressRecord:
    return SkillProgressRecord(
        skill_id=skill_id,
        patient_sim_progress=PatientSimProgress(total_steps=total_steps),
        chat_sim_progress=ChatSimProgress(total_sessions=total_sessions),
    )


def build_summary(records: list[SkillProgressRecord]) -> ProgressSummary:
    overall = [r.overall_progress for r in records]
    average = round(sum(o.completion_percentage for o in overall) / len(overall)) if overall else 0
    return ProgressSummary(
        total_skills=len(records),
        completed_skills=sum(1 for o in overall if o.is_completed),
        in_progress_skills=sum(
            1 for o in overall if o.completion_percentage > 0 and not o.is_completed
        ),
        total_time_spent=sum(o.total_time_spent for o in overall),
        average_completion_percentage=average,
        skills_progress=[
            SkillSummaryRow(
                skill_id=r.skill_id,
                completion_percentage=r.overall_progress.completion_percentage,
                is_completed=r.overall_progress.is_completed,
                last_updated=r.overall_progress.last_updated_at,
                patient_sim_completed=r.patient_sim_progress.is_completed,
                chat_sim_completed=r.chat_sim_progress.is_completed,
            )
            for r in records
        ],
    )


def build_statistics(records: list[SkillProgressRecord]) -> list[SkillStatistics]:
    by_skill: defaultdict[str, list[SkillProgressRecord]] = defaultdict(list)
    for record in records:
        by_skill[record.skill_id].append(record)

    stats = []
    for skill_id, group in by_skill.items():
        completed = sum(1 for r in group if r.overall_progress.is_completed)
        ratings = [
            r.chat_sim_progress.average_rating
            for r in group
            if r.chat_sim_progress.average_rating is not None
        ]
        stats.append(
            SkillStatistics(
                skill_id=skill_id,
                total_users=len(group),
                completed_users=completed,
                completion_rate=completed / len(group) * 100,
                average_score=round(
                    sum(r.patient_sim_progress.best_score for r in group) / len(group), 1
                ),
                average_time_spent=round(
                    sum(r.overall_progress.total_time_spent for r in group) / len(group)
                ),
                average_chat_rating=round(sum(ratings) / len(ratings), 1) if ratings else None,
            )
        )
    return stats


@router.get("/health")
async def health_check() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}


@router.get("/summary")
async def get_summary(
    learner_id: str = Depends(get_learner_id),
    repository: ProgressRepository = Depends(get_repository),
) -> dict:
    """Roll-up of the learner's progress across all skills."""
    return build_summary(repository.records_for_learner(learner_id)).to_wire()


@router.get("/skill/{skill_id}")
async def get_skill_progress(
    skill_id: str,
    learner_id: str = Depends(get_learner_id),
    repository: ProgressRepository = Depends(get_repository),
) -> dict:
    """Progress on one skill; an untouched skill reads as an empty record."""
    record = repository.get(learner_id, skill_id)
    if record is None:
        record = _new_record(skill_id)
    return record.to_wire()


@router.post("/skill/{skill_id}/initialize")
async def initialize_skill_progress(
    skill_id: str,
    body: InitializeRequest,
    learner_id: str = Depends(get_learner_id),
    repository: ProgressRepository = Depends(get_repository),
) -> dict:
    existing = repository.get(learner_id, skill_id)
    if existing is not None:
        return existing.to_wire()
    record = _new_record(skill_id, body.total_steps, body.total_chat_sessions)
    record.recompute_overall()
    repository.save(learner_id, record)
    logger.info("skill_progress_initialized", skill_id=skill_id)
    return record.to_wire()


@router.post("/skill/{skill_id}/patient-sim")
async def update_patient_sim_progress(
    skill_id: str,
    body: PatientSimRequest,
    learner_id: str = Depends(get_learner_id),
    repository: ProgressRepository = Depends(get_repository),
) -> dict:
    record = repository.get(learner_id, skill_id) or _new_record(skill_id, body.total_steps)
    record.apply_patient_sim(body.total_steps, body.completed_steps, body.score, body.time_spent)
    repository.save(learner_id, record)
    logger.info(
        "patient_sim_progress_updated",
        skill_id=skill_id,
        completed_steps=len(record.patient_sim_progress.completed_steps),
        total_steps=body.total_steps,
        score=body.score,
    )
    return record.to_wire()


@router.post("/skill/{skill_id}/chat-sim")
async def update_chat_sim_progress(
    skill_id: str,
    body: ChatSimRequest,
    learner_id: str = Depends(get_learner_id),
    repository: ProgressRepository = Depends(get_repository),
) -> dict:
    record = repository.get(learner_id, skill_id) or _new_record(skill_id)
    record.apply_chat_sim(body.session_id, body.rating, body.duration)
    repository.save(learner_id, record)
    logger.info("chat_sim_progress_updated", skill_id=skill_id, rating=body.rating)
    return record.to_wire()


@router.delete("/skill/{skill_id}/reset")
async def reset_skill_progress(
    skill_id: str,
    learner_id: str = Depends(get_learner_id),
    repository: ProgressRepository = Depends(get_repository),
) -> dict:
    """Delete the skill's progress record; stars are kept."""
    if not repository.delete(learner_id, skill_id):
        raise HTTPException(status_code=404, detail="No progress found for this skill")
    logger.info("skill_progress_reset", skill_id=skill_id)
    return {"message": "Progress reset successfully"}


@router.get("/leaderboard/{skill_id}")
async def get_leaderboard(
    skill_id: str,
    limit: int | None = Query(default=None, ge=1, le=100),
    learner_id: str = Depends(get_learner_id),
    repository: ProgressRepository = Depends(get_repository),
    settings: Settings = Depends(get_app_settings),
) -> list[dict]:
    """Learners who completed the skill, best score first, then fastest."""
    completed = [
        (owner, record)
        for owner, record in repository.all_records()
        if record.skill_id == skill_id and record.overall_progress.is_completed
    ]
    completed.sort(
        key=lambda item: (
            -item[1].patient_sim_progress.best_score,
            item[1].overall_progress.total_time_spent,
        )
    )
    limit = limit or settings.leaderboard_default_limit
    return [
        LeaderboardEntry(
            learner_id=owner,
            best_score=record.patient_sim_progress.best_score,
            total_time_spent=record.overall_progress.total_time_spent,
            last_updated_at=record.overall_progress.last_updated_at,
        ).to_wire()
        for owner, record in completed[:limit]
    ]


@router.get("/stats")
async def get_statistics(
    learner_id: str = Depends(get_learner_id),
    repository: ProgressRepository = Depends(get_repository),
) -> list[dict]:
    """Per-skill aggregates over all learners."""
    records = [record for _, record in repository.all_records()]
    return [stat.to_wire() for stat in build_statistics(records)]


@router.post("/stars/award", dependencies=[Depends(require_star_endpoints)])
async def award_star(
    body: AwardRequest,
    learner_id: str = Depends(get_learner_id),
    repository: ProgressRepository = Depends(get_repository),
) -> dict:
    """Idempotent: a repeat award returns the existing star."""
    star, created = repository.award_star(learner_id, body.skill_id, body.lesson_type)
    if created:
        logger.info("star_created", skill_id=body.skill_id, lesson_type=body.lesson_type.value)
    return {"success": True, "alreadyAwarded": not created, "star": star.to_wire()}


@router.get("/stars", dependencies=[Depends(require_star_endpoints)])
async def get_stars(
    learner_id: str = Depends(get_learner_id),
    repository: ProgressRepository = Depends(get_repository),
) -> dict:
    stars = repository.stars_for(learner_id)
    return {"totalStars": len(stars), "stars": [star.to_wire() for star in stars]}


@router.post("/stars/sync", dependencies=[Depends(require_star_endpoints)])
async def sync_stars(
    learner_id: str = Depends(get_learner_id),
    repository: ProgressRepository = Depends(get_repository),
) -> dict:
    """Award every star the learner's progress records make eligible."""
    awarded = 0
    for record in repository.records_for_learner(learner_id):
        for lesson_type in eligible_lessons(record):
            _, created = repository.award_star(learner_id, record.skill_id, lesson_type)
            awarded += int(created)
    total = len(repository.stars_for(learner_id))
    logger.info("stars_synced", awarded=awarded, total_stars=total)
    return {"success": True, "awarded": awarded, "totalStars": total}
