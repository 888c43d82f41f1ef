"""Star awards: server first, local mirror when the server cannot answer."""

import asyncio
from collections import defaultdict

import structlog
from pydantic import ValidationError

from skill_progress_sync.models.achievement import (
    AwardResult,
    LessonType,
    RemoteAwardResponse,
    RemoteStarList,
    RemoteSyncResponse,
    ServerSyncResult,
    StarAward,
    StarCount,
    StarSource,
)
from skill_progress_sync.remote.progress_store import ProgressStore
from skill_progress_sync.remote.result import CallResult, ErrorKind
from skill_progress_sync.storage.fallback_cache import LocalFallbackCache

logger = structlog.get_logger()


def _dedupe(stars: list[StarAward]) -> list[StarAward]:
    """Keep the first star per (skill_id, lesson_type)."""
    unique: dict[tuple[str, LessonType], StarAward] = {}
    for star in stars:
        unique.setdefault(star.key, star)
    return list(unique.values())


class AchievementAwarder:
    """Issues and counts stars.

    Every operation tries the remote store once and, on any failure,
    degrades to the local cache without retrying. Awards for the same
    (skill_id, lesson_type) are serialised by a per-key lock so the local
    check-then-write cannot interleave within this process.

    Args:
        store: Remote progress store.
        cache: Local fallback mirror.
    """

    def __init__(self, store: ProgressStore, cache: LocalFallbackCache):
        self.store = store
        self.cache = cache
        self._key_locks: defaultdict[tuple[str, LessonType], asyncio.Lock] = defaultdict(
            asyncio.Lock
        )

    async def award(self, skill_id: str, lesson_type: LessonType | str) -> AwardResult:
        lesson_type = LessonType(lesson_type)
        async with self._key_locks[(skill_id, lesson_type)]:
            result = await self.store.award_star(skill_id, lesson_type)
            if result.ok:
                try:
                    response = RemoteAwardResponse.model_validate(result.data)
                except ValidationError:
                    result = CallResult.failure(
                        ErrorKind.MALFORMED, "award response", result.status_code
                    )
                else:
                    if response.success:
                        awarded_at = response.star.awarded_at if response.star else None
                        self.cache.put(skill_id, lesson_type, awarded_at)
                        logger.info(
                            "star_awarded",
                            skill_id=skill_id,
                            lesson_type=lesson_type.value,
                            source=StarSource.SERVER.value,
                            already_awarded=response.already_awarded,
                        )
                        return AwardResult(
                            success=True,
                            source=StarSource.SERVER,
                            already_awarded=response.already_awarded,
                        )
                    result = CallResult.failure(
                        ErrorKind.REJECTED, "award not accepted", result.status_code
                    )
            return self._award_locally(skill_id, lesson_type, result)

    def _award_locally(
        self, skill_id: str, lesson_type: LessonType, failed: CallResult
    ) -> AwardResult:
        reason = failed.error_kind.value if failed.error_kind else ErrorKind.TRANSPORT.value
        logger.warning(
            "star_award_fallback",
            skill_id=skill_id,
            lesson_type=lesson_type.value,
            reason=reason,
            transient=failed.is_transient,
        )
        already_awarded = self.cache.has(skill_id, lesson_type)
        if not already_awarded:
            self.cache.put(skill_id, lesson_type)
        return AwardResult(
            success=True,
            source=StarSource.LOCAL,
            already_awarded=already_awarded,
            fallback_reason=reason,
        )

    async def get_count(self) -> StarCount:
        result = await self.store.get_stars()
        if result.ok:
            try:
                remote = RemoteStarList.model_validate(result.data)
            except ValidationError:
                result = CallResult.failure(ErrorKind.MALFORMED, "star list", result.status_code)
            else:
                detail = _dedupe(remote.stars)
                total = len(detail) if detail else (remote.total_stars or 0)
                return StarCount(total=total, detail=detail, source=StarSource.SERVER)

        logger.warning("star_count_fallback", reason=result.error_kind.value)
        return StarCount(
            total=self.cache.count(),
            detail=self.cache.list(),
            source=StarSource.LOCAL,
            fallback_reason=result.error_kind.value,
        )

    async def request_server_sync(self) -> ServerSyncResult:
        """Ask the server to backfill stars itself.

        ``attempted=False`` means the caller should run reconciliation.
        """
        result = await self.store.sync_stars()
        if result.ok:
            try:
                response = RemoteSyncResponse.model_validate(result.data)
            except ValidationError:
                result = CallResult.failure(ErrorKind.MALFORMED, "sync response", result.status_code)
            else:
                if response.success:
                    logger.info("star_server_sync", awarded=response.awarded)
                    return ServerSyncResult(
                        attempted=True,
                        awarded=response.awarded,
                        total_stars=response.total_stars,
                    )
                result = CallResult.failure(ErrorKind.REJECTED, "sync not accepted", result.status_code)

        logger.info("star_server_sync_unavailable", reason=result.error_kind.value)
        return ServerSyncResult(attempted=False, fallback_reason=result.error_kind.value)
