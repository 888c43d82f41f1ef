"""Tests for catalog reconciliation."""

import pytest

from skill_progress_sync.achievements.reconcile import completion_percentage, eligible_lessons
from skill_progress_sync.models.achievement import LessonType, StarSource
from skill_progress_sync.models.progress import ProgressSummary, SkillProgressRecord

from conftest import progress_record


class TestCompletionPercentage:
    def test_full_catalog_example(self):
        assert completion_percentage(5, 23) == 11

    def test_rounds_half_up(self):
        assert completion_percentage(1, 4) == 13

    def test_empty_catalog(self):
        assert completion_percentage(3, 0) == 0

    def test_clamped_to_100(self):
        assert completion_percentage(10, 2) == 100

    def test_all_stars(self):
        assert completion_percentage(46, 23) == 100


class TestEligibleLessons:
    @pytest.mark.parametrize(
        ("kwargs", "expected"),
        [
            ({}, []),
            ({"chat_completed": True}, [LessonType.CHAT]),
            ({"sessions_completed": 1}, [LessonType.CHAT]),
            ({"sim_completed": True}, [LessonType.SIMULATION]),
            (
                {"chat_completed": True, "sim_completed": True},
                [LessonType.CHAT, LessonType.SIMULATION],
            ),
        ],
    )
    def test_conditions(self, kwargs, expected):
        record = SkillProgressRecord.model_validate(progress_record("hand-hygiene", **kwargs))
        assert eligible_lessons(record) == expected


class TestReconciliationRun:
    async def test_end_to_end_scenario(self, reconciler, awarder, fake_api):
        fake_api.records["A"] = progress_record("A", chat_completed=True, sessions_completed=1)
        fake_api.records["B"] = progress_record(
            "B", chat_completed=True, sessions_completed=1, sim_completed=True
        )
        fake_api.add_star("B", "chat")
        fake_api.add_star("B", "simulation")
        fake_api.failing_skills.add("C")
        before = await awarder.get_count()

        report = await reconciler.run(["A", "B", "C"])

        assert report.awarded == 1
        assert report.skipped == 1
        assert report.failed == ["C"]
        assert report.star_count.total - before.total == 1
        assert ("A", "chat") in fake_api.stars
        assert ("A", "simulation") not in fake_api.stars

    async def test_stars_match_eligibility(self, reconciler, fake_api):
        fake_api.records["chat-only"] = progress_record("chat-only", sessions_completed=2)
        fake_api.records["sim-only"] = progress_record("sim-only", sim_completed=True)
        fake_api.records["both"] = progress_record("both", chat_completed=True, sim_completed=True)
        fake_api.records["none"] = progress_record("none")

        report = await reconciler.run(["chat-only", "sim-only", "both", "none"])

        assert set(fake_api.stars) == {
            ("chat-only", "chat"),
            ("sim-only", "simulation"),
            ("both", "chat"),
            ("both", "simulation"),
        }
        assert report.awarded == 4
        assert report.skipped == 1
        assert report.completion_percentage == 50

    async def test_failure_does_not_abort_pass(self, reconciler, fake_api):
        fake_api.failing_skills.update({"first", "third"})
        fake_api.records["second"] = progress_record("second", sim_completed=True)
        fake_api.records["fourth"] = progress_record("fourth", chat_completed=True)

        report = await reconciler.run(["first", "second", "third", "fourth"])

        assert report.failed == ["first", "third"]
        assert report.awarded == 2

    async def test_second_pass_awards_nothing(self, reconciler, fake_api):
        fake_api.records["A"] = progress_record("A", chat_completed=True, sim_completed=True)
        await reconciler.run(["A"])

        report = await reconciler.run(["A"])

        assert report.awarded == 0
        assert report.skipped == 1
        assert len(fake_api.calls_to("/progress/stars/award")) == 2

    async def test_existing_stars_are_not_re_requested(self, reconciler, fake_api):
        fake_api.records["A"] = progress_record("A", chat_completed=True)
        fake_api.add_star("A", "chat")
        await reconciler.run(["A"])
        assert fake_api.calls_to("/progress/stars/award") == []

    async def test_local_fallback_when_star_endpoints_absent(self, reconciler, fake_api, cache):
        fake_api.star_endpoints = False
        fake_api.records["hand-hygiene"] = progress_record("hand-hygiene", sessions_completed=1)
        cache.put("foot-care", "simulation")

        report = await reconciler.run(["hand-hygiene", "foot-care"])

        assert report.awarded == 1
        assert report.star_count.source is StarSource.LOCAL
        assert report.star_count.total == 2
        assert cache.has("hand-hygiene", "chat")

    async def test_locally_known_star_not_double_counted(self, reconciler, fake_api, cache):
        fake_api.star_endpoints = False
        fake_api.records["hand-hygiene"] = progress_record("hand-hygiene", chat_completed=True)
        cache.put("hand-hygiene", "chat")

        report = await reconciler.run(["hand-hygiene"])

        assert report.awarded == 0
        assert report.star_count.total == 1
        assert cache.storage.get("totalStars") == "1"

    async def test_unreachable_server_fails_every_skill(self, reconciler, fake_api):
        fake_api.unreachable = True
        report = await reconciler.run(["A", "B"])
        assert report.failed == ["A", "B"]
        assert report.awarded == 0
        assert report.star_count.source is StarSource.LOCAL

    async def test_summary_skips_skills_without_records(self, reconciler, fake_api):
        fake_api.records["A"] = progress_record("A", chat_completed=True)
        summary = ProgressSummary.model_validate({"skillsProgress": [{"skillId": "A"}]})

        report = await reconciler.run(["A", "B", "C"], summary)

        assert report.awarded == 1
        assert report.skipped == 2
        assert fake_api.calls_to("/progress/skill/B") == []

    async def test_duplicate_catalog_entries_processed_once(self, reconciler, fake_api):
        fake_api.records["A"] = progress_record("A", chat_completed=True)
        report = await reconciler.run(["A", "A"])
        assert report.awarded == 1
        assert len(fake_api.calls_to("/progress/skill/A")) == 1
