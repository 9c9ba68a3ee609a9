import asyncio
from unittest import IsolatedAsyncioTestCase, TestCase

from workbook.backend.ai.context import ContextAggregator, most_recent, summarize_assessment


def _day(day: int) -> str:
	return f"2024-01-{day:02d}T09:00:00Z"


class _FakeHistory:
	def __init__(self, *, assessments=None, progress=None, insights=None, failing=()):
		self.assessments = assessments or []
		self.progress = progress or []
		self.insights = insights or []
		self.failing = set(failing)
		self.calls = []

	async def get_assessments(self, user_id):
		self.calls.append(("assessments", user_id))
		if "assessments" in self.failing:
			raise RuntimeError("assessments table locked")
		return self.assessments

	async def get_progress(self, user_id, chapter_id=None):
		self.calls.append(("progress", user_id, chapter_id))
		if "progress" in self.failing:
			raise RuntimeError("progress table locked")
		return self.progress

	async def get_insights(self, user_id, acknowledged=None):
		self.calls.append(("insights", user_id, acknowledged))
		if "insights" in self.failing:
			raise RuntimeError("insights table locked")
		return self.insights


def _assessments(count: int):
	return [
		{
			"assessmentType": f"aaq-{day}",
			"responses": [{"questionId": "q1", "rating": day % 5 + 1, "note": "private answer"}],
			"completedAt": _day(day),
		}
		for day in range(1, count + 1)
	]


def _progress(count: int):
	return [
		{"chapterId": 2, "sectionId": f"s{day}", "completed": day % 2 == 0, "updatedAt": _day(day)}
		for day in range(1, count + 1)
	]


def _insights(count: int):
	return [
		{
			"insightType": "progress_analysis",
			"title": f"Insight {day}",
			"description": "Steady values work.",
			"confidence": 70,
			"createdAt": _day(day),
		}
		for day in range(1, count + 1)
	]


class ContextAggregatorTests(IsolatedAsyncioTestCase):
	async def test_history_is_capped_and_newest_last(self) -> None:
		source = _FakeHistory(assessments=_assessments(8), progress=_progress(15), insights=_insights(9))
		context = await ContextAggregator(source).build_context("user-1234567890", chapter_id=2, section_id="s3")

		self.assertEqual(len(context.assessment_history), 5)
		self.assertEqual(len(context.progress_history), 10)
		self.assertEqual(len(context.previous_insights), 5)
		self.assertEqual(context.assessment_history[-1].assessment_type, "aaq-8")
		self.assertEqual(context.assessment_history[0].assessment_type, "aaq-4")
		self.assertEqual(context.progress_history[-1].section_id, "s15")
		self.assertEqual(context.previous_insights[-1].title, "Insight 9")
		self.assertEqual(context.faults, ())
		self.assertIn(("progress", "user-1234567890", 2), source.calls)
		self.assertIn(("insights", "user-1234567890", False), source.calls)

	async def test_raw_assessment_answers_are_not_carried(self) -> None:
		source = _FakeHistory(assessments=_assessments(1))
		context = await ContextAggregator(source).build_context("user-1")

		summary = context.assessment_history[0].as_dict()
		self.assertEqual(set(summary), {"assessmentType", "averageScore", "responseCount", "completedAt"})
		self.assertNotIn("private answer", str(summary))

	async def test_failed_category_degrades_to_empty(self) -> None:
		source = _FakeHistory(assessments=_assessments(2), insights=_insights(2), failing={"progress"})
		with self.assertLogs("workbook.backend.ai.context", level="WARNING") as logs:
			context = await ContextAggregator(source).build_context("user-1234567890")

		self.assertEqual(context.faults, ("progress",))
		self.assertEqual(context.progress_history, ())
		self.assertEqual(len(context.assessment_history), 2)
		self.assertEqual(len(context.previous_insights), 2)
		joined = "\n".join(logs.output)
		self.assertIn("progress", joined)
		self.assertNotIn("user-1234567890", joined)

	async def test_all_categories_failing_still_builds_context(self) -> None:
		source = _FakeHistory(failing={"assessments", "progress", "insights"})
		with self.assertLogs("workbook.backend.ai.context", level="WARNING"):
			context = await ContextAggregator(source).build_context("user-1")

		self.assertEqual(context.faults, ("assessments", "progress", "insights"))
		self.assertEqual(context.assessment_history, ())

	async def test_malformed_progress_never_takes_a_slot(self) -> None:
		malformed = [
			{"chapterId": "2", "sectionId": "bad-1", "updatedAt": _day(28)},
			{"chapterId": 2, "sectionId": None, "updatedAt": _day(29)},
			{"sectionId": "bad-3", "updatedAt": _day(30)},
		]
		source = _FakeHistory(progress=_progress(10) + malformed)
		context = await ContextAggregator(source).build_context("user-1")

		self.assertEqual(len(context.progress_history), 10)
		self.assertTrue(all(not entry.section_id.startswith("bad") for entry in context.progress_history))

	async def test_cancellation_is_not_absorbed(self) -> None:
		class _Cancelling(_FakeHistory):
			async def get_assessments(self, user_id):
				raise asyncio.CancelledError()

		with self.assertRaises(asyncio.CancelledError):
			await ContextAggregator(_Cancelling()).build_context("user-1")


class ContextHelperTests(TestCase):
	def test_assessment_average_skips_non_numeric_ratings(self) -> None:
		summary = summarize_assessment(
			{
				"assessmentType": "values",
				"responses": [{"rating": 4}, {"rating": 2}, {"rating": "x"}, {"rating": None}, {"rating": 3.5}],
				"completedAt": "2024-03-01T10:00:00+00:00",
			}
		)
		self.assertEqual(summary.average_score, 3.17)
		self.assertEqual(summary.response_count, 3)
		self.assertEqual(summary.completed_at, "2024-03-01T10:00:00Z")

	def test_assessment_without_responses_scores_zero(self) -> None:
		summary = summarize_assessment({"assessmentType": "values", "responses": None})
		self.assertEqual(summary.average_score, 0.0)
		self.assertEqual(summary.response_count, 0)

	def test_most_recent_places_undated_records_first(self) -> None:
		records = [
			{"id": "late", "at": _day(5)},
			{"id": "undated"},
			{"id": "early", "at": _day(1)},
		]
		ordered = most_recent(records, "at", 3)
		self.assertEqual([record["id"] for record in ordered], ["undated", "early", "late"])
		self.assertEqual([record["id"] for record in most_recent(records, "at", 1)], ["late"])
		self.assertEqual(most_recent(records, "at", 0), [])
