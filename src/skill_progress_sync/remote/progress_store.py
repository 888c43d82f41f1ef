"""Remote progress store facade: one round trip per call, no caching."""

from collections.abc import Sequence
from typing import Any
from urllib.parse import quote

import structlog
from pydantic import TypeAdapter, ValidationError

from skill_progress_sync.models.achievement import LessonType
from skill_progress_sync.models.progress import (
    CompletedStep,
    LeaderboardEntry,
    ProgressSummary,
    SkillProgressRecord,
    SkillStatistics,
)
from skill_progress_sync.remote.client import ProgressApiClient
from skill_progress_sync.remote.result import CallResult, ErrorKind, ServiceUnavailable

logger = structlog.get_logger()

LOAD_FAILED = "Progress could not be loaded"
SAVE_FAILED = "Progress could not be saved"


def _skill_path(skill_id: str) -> str:
    return f"/progress/skill/{quote(skill_id, safe='')}"


class ProgressStore:
    """Typed wrapper over the /progress endpoints.

    Progress CRUD methods raise ServiceUnavailable on any failure. The star
    endpoints return the raw CallResult so callers can branch on the
    classification and fall back.

    Args:
        client: Transport used for every request.
    """

    def __init__(self, client: ProgressApiClient):
        self.client = client

    async def _call(
        self,
        operation: str,
        method: str,
        path: str,
        parse: Any,
        user_message: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        result = await self.client.request(method, path, json=json, params=params)
        if not result.ok:
            raise ServiceUnavailable.from_result(operation, result, user_message)
        try:
            return TypeAdapter(parse).validate_python(result.data)
        except ValidationError as exc:
            logger.warning("progress_response_invalid", operation=operation, errors=exc.error_count())
            raise ServiceUnavailable(
                f"{operation} returned an invalid payload: {exc}",
                error_kind=ErrorKind.MALFORMED,
                status_code=result.status_code,
                user_message=user_message,
            ) from exc

    async def get_summary(self) -> ProgressSummary:
        return await self._call("get_summary", "GET", "/progress/summary", ProgressSummary, LOAD_FAILED)

    async def get_skill_progress(self, skill_id: str) -> SkillProgressRecord:
        return await self._call(
            "get_skill_progress", "GET", _skill_path(skill_id), SkillProgressRecord, LOAD_FAILED
        )

    async def initialize_skill_progress(
        self, skill_id: str, total_steps: int, total_chat_sessions: int = 1
    ) -> SkillProgressRecord:
        return await self._call(
            "initialize_skill_progress",
            "POST",
            f"{_skill_path(skill_id)}/initialize",
            SkillProgressRecord,
            SAVE_FAILED,
            json={"totalSteps": total_steps, "totalChatSessions": total_chat_sessions},
        )

    async def update_patient_sim_progress(
        self,
        skill_id: str,
        total_steps: int,
        completed_steps: Sequence[str | CompletedStep],
        score: float,
        time_spent: int,
    ) -> SkillProgressRecord:
        """Report a patient simulation attempt.

        Args:
            skill_id: Skill being practised.
            total_steps: Number of steps in the scenario.
            completed_steps: Step ids (or CompletedStep entries) in completion order.
            score: Attempt score, 0-100.
            time_spent: Attempt duration in seconds.
        """
        steps = [
            step if isinstance(step, CompletedStep) else CompletedStep(step_id=step)
            for step in completed_steps
        ]
        return await self._call(
            "update_patient_sim_progress",
            "POST",
            f"{_skill_path(skill_id)}/patient-sim",
            SkillProgressRecord,
            SAVE_FAILED,
            json={
                "totalSteps": total_steps,
                "completedSteps": [step.to_wire() for step in steps],
                "score": score,
                "timeSpent": time_spent,
            },
        )

    async def update_chat_sim_progress(
        self, skill_id: str, session_id: str, rating: int, duration: int
    ) -> SkillProgressRecord:
        return await self._call(
            "update_chat_sim_progress",
            "POST",
            f"{_skill_path(skill_id)}/chat-sim",
            SkillProgressRecord,
            SAVE_FAILED,
            json={"sessionId": session_id, "rating": rating, "duration": duration},
        )

    async def reset_skill_progress(self, skill_id: str) -> dict:
        return await self._call(
            "reset_skill_progress", "DELETE", f"{_skill_path(skill_id)}/reset", dict, SAVE_FAILED
        )

    async def get_leaderboard(self, skill_id: str, limit: int = 10) -> list[LeaderboardEntry]:
        return await self._call(
            "get_leaderboard",
            "GET",
            f"/progress/leaderboard/{quote(skill_id, safe='')}",
            list[LeaderboardEntry],
            LOAD_FAILED,
            params={"limit": limit},
        )

    async def get_statistics(self) -> list[SkillStatistics]:
        return await self._call(
            "get_statistics", "GET", "/progress/stats", list[SkillStatistics], LOAD_FAILED
        )

    # Star endpoints: never raise, the awarder decides what a failure means

    async def award_star(self, skill_id: str, lesson_type: LessonType) -> CallResult:
        return await self.client.request(
            "POST",
            "/progress/stars/award",
            json={"skillId": skill_id, "lessonType": LessonType(lesson_type).value},
        )

    async def get_stars(self) -> CallResult:
        return await self.client.request("GET", "/progress/stars")

    async def sync_stars(self) -> CallResult:
        return await self.client.request("POST", "/progress/stars/sync")
