"""Backfill stars that progress says should exist but no store records."""

import math
from collections.abc import Iterable

import structlog

from skill_progress_sync.achievements.awarder import AchievementAwarder
from skill_progress_sync.models.achievement import LessonType, ReconciliationReport
from skill_progress_sync.models.progress import ProgressSummary, SkillProgressRecord
from skill_progress_sync.remote.progress_store import ProgressStore
from skill_progress_sync.remote.result import ServiceUnavailable

logger = structlog.get_logger()

# Every skill carries one chat star and one simulation star
MODES_PER_SKILL = len(LessonType)


def completion_percentage(star_count: int, catalog_size: int) -> int:
    """Share of all awardable stars that have been earned, rounded half up."""
    if catalog_size <= 0:
        return 0
    raw = 100 * star_count / (catalog_size * MODES_PER_SKILL)
    return max(0, min(100, math.floor(raw + 0.5)))


def eligible_lessons(record: SkillProgressRecord) -> list[LessonType]:
    """Modes whose completion condition currently holds for this record."""
    lessons = []
    if record.chat_star_eligible:
        lessons.append(LessonType.CHAT)
    if record.simulation_star_eligible:
        lessons.append(LessonType.SIMULATION)
    return lessons


class ReconciliationSync:
    """Walks the skill catalog and awards any missing eligible star.

    Skills are processed strictly one after another. A skill whose progress
    cannot be fetched is reported in ``failed`` and the pass moves on.

    Args:
        store: Remote progress store used to read each skill's record.
        awarder: Star issuer; the only component that creates stars.
    """

    def __init__(self, store: ProgressStore, awarder: AchievementAwarder):
        self.store = store
        self.awarder = awarder

    async def run(
        self,
        skill_catalog: Iterable[str],
        progress_summary: ProgressSummary | None = None,
    ) -> ReconciliationReport:
        """Run one reconciliation pass.

        Args:
            skill_catalog: Skill ids in the order to process them.
            progress_summary: Optional learner summary. Skills it does not
                list have no progress record; they are counted in
                ``skipped`` (not ``failed``) and never fetched. Without a
                summary every skill is fetched, and only a failed fetch
                lands in ``failed``.

        Returns:
            Tally of new stars, skipped and failed skills, plus the star
            count re-read after the pass.
        """
        catalog = list(dict.fromkeys(skill_catalog))
        known_skills = progress_summary.skill_ids if progress_summary is not None else None

        snapshot = await self.awarder.get_count()
        existing = snapshot.keys
        report = ReconciliationReport()
        logger.info(
            "reconcile_started",
            catalog_size=len(catalog),
            existing_stars=snapshot.total,
            source=snapshot.source.value,
        )

        for skill_id in catalog:
            if known_skills is not None and skill_id not in known_skills:
                report.skipped += 1
                continue

            try:
                record = await self.store.get_skill_progress(skill_id)
            except ServiceUnavailable as exc:
                logger.warning(
                    "reconcile_skill_failed",
                    skill_id=skill_id,
                    error_kind=exc.error_kind.value,
                    status_code=exc.status_code,
                )
                report.failed.append(skill_id)
                continue

            new_stars = 0
            for lesson_type in eligible_lessons(record):
                if (skill_id, lesson_type) in existing:
                    continue
                result = await self.awarder.award(skill_id, lesson_type)
                existing.add((skill_id, lesson_type))
                if not result.already_awarded:
                    new_stars += 1
                    logger.info(
                        "reconcile_star_backfilled",
                        skill_id=skill_id,
                        lesson_type=lesson_type.value,
                        source=result.source.value,
                    )

            if new_stars:
                report.awarded += new_stars
            else:
                report.skipped += 1

        report.star_count = await self.awarder.get_count()
        report.completion_percentage = completion_percentage(
            report.star_count.total, len(catalog)
        )
        logger.info(
            "reconcile_finished",
            awarded=report.awarded,
            skipped=report.skipped,
            failed=len(report.failed),
            total_stars=report.star_count.total,
            completion_percentage=report.completion_percentage,
        )
        return report
