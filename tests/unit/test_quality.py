"""
Quality checklists and weighted deliverable evaluation
"""

import pytest

from pmo_financial.errors import OperationError
from pmo_financial.quality import calculate_quality_score, default_criteria


def _results(*met):
    return [{"met": value} for value in met]


class TestQualityScore:
    """Weighted score; required criteria gate the pass flag"""

    def test_optional_miss_still_passes(self):
        criteria = default_criteria("QC-001", "document")
        # weights 10, 10, 8, 5, 5; Formatting is optional
        score, passed = calculate_quality_score(criteria, _results(True, True, True, False, True))
        assert score == 87
        assert passed is True

    def test_required_miss_fails_regardless_of_score(self):
        criteria = default_criteria("QC-001", "document")
        score, passed = calculate_quality_score(criteria, _results(True, False, True, True, True))
        assert score == 74
        assert passed is False

    def test_missing_results_count_as_not_met(self):
        criteria = default_criteria("QC-001", "presentation")
        score, passed = calculate_quality_score(criteria, _results(True))
        assert score == 36
        assert passed is False

    def test_no_criteria(self):
        assert calculate_quality_score([], []) == (0, True)

    def test_defaults_per_type(self):
        criteria = default_criteria("QC-007", "software")
        assert [c.criterion_id for c in criteria][:2] == ["QC-007-C001", "QC-007-C002"]
        assert criteria[0].name == "Functionality"
        assert default_criteria("QC-007", None) == []


class TestChecklists:
    @pytest.mark.asyncio
    async def test_create_with_custom_criteria(self, services):
        checklist = await services.quality.create_quality_checklist(
            "Design review",
            "Architecture sign-off",
            "design",
            [
                {"name": "Diagrams", "category": "clarity", "required": True, "weight": 3},
                {"name": "Cost model", "category": "accuracy", "weight": 1},
            ],
            created_by="qa",
        )

        assert checklist.checklist_id == "QC-001"
        assert [c.criterion_id for c in checklist.criteria] == ["QC-001-C001", "QC-001-C002"]

        stored = await services.quality.read_checklist_by_id("QC-001")
        assert stored.name == "Design review"
        assert [c.name for c in stored.criteria] == ["Diagrams", "Cost model"]
        assert stored.criteria[0].required is True
        assert stored.criteria[1].weight == 1.0

    @pytest.mark.asyncio
    async def test_checklist_without_criteria_uses_type_defaults(self, services):
        await services.quality.create_quality_checklist("Software DoD", "", "software", [], created_by="qa")

        checklist = await services.quality.get_checklist_for_type("software")
        assert checklist.checklist_id == "QC-001"
        assert len(checklist.criteria) == 5
        assert checklist.criteria[3].name == "Security"

    @pytest.mark.asyncio
    async def test_generic_checklist_applies_to_every_type(self, services):
        await services.quality.create_quality_checklist("Generic", "", None, [], created_by="qa")

        checklist = await services.quality.get_checklist_for_type("report")
        assert checklist.deliverable_type == "all"
        assert checklist.criteria[0].name == "Executive Summary"
        assert await services.quality.get_checklist_for_type("data") is not None

    @pytest.mark.asyncio
    async def test_no_checklist_for_type(self, services):
        assert await services.quality.get_checklist_for_type("hardware") is None

    @pytest.mark.asyncio
    async def test_validation(self, services):
        with pytest.raises(OperationError, match="Unknown deliverable type"):
            await services.quality.get_checklist_for_type("poetry")
        with pytest.raises(OperationError, match="unknown category"):
            await services.quality.create_quality_checklist(
                "Bad", "", "document", [{"name": "Vibes", "category": "mood"}], created_by="qa"
            )
        with pytest.raises(OperationError, match="Checklist name is required"):
            await services.quality.create_quality_checklist("", "", "document", [], created_by="qa")


class TestEvaluation:
    @pytest.mark.asyncio
    async def test_evaluate_and_store_result(self, services, captured_events):
        await services.quality.create_quality_checklist("Docs", "", "document", [], created_by="qa")

        result = await services.quality.evaluate_deliverable(
            "D-001", "QC-001", _results(True, True, True, False, True), evaluated_by="reviewer", comments="Nice"
        )

        assert result["result_id"] == "QCR-001"
        assert result["overall_score"] == 87
        assert result["passed"] is True
        assert result["results"][3] == {"criterion_id": "QC-001-C004", "met": False, "notes": ""}
        assert captured_events[-1].event_type == "quality_check_passed"

        stored = await services.quality.get_checklist_results_for_deliverable("D-001")
        assert [r.result_id for r in stored] == ["QCR-001"]
        assert stored[0].comments == "Nice"
        assert await services.quality.get_checklist_results_for_deliverable("D-002") == []

    @pytest.mark.asyncio
    async def test_failed_evaluation_event(self, services, captured_events):
        await services.quality.create_quality_checklist("Docs", "", "document", [], created_by="qa")

        result = await services.quality.evaluate_deliverable("D-001", "QC-001", _results(False), evaluated_by="reviewer")
        assert result["passed"] is False
        assert captured_events[-1].event_type == "quality_check_failed"

    @pytest.mark.asyncio
    async def test_unknown_checklist(self, services):
        with pytest.raises(OperationError, match="Checklist not found"):
            await services.quality.evaluate_deliverable("D-001", "QC-404", [], evaluated_by="reviewer")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "results,message",
        [
            ([{"met": "false"}], "Result 1 needs a boolean 'met'"),
            ([{"met": True}, {"notes": "skipped"}], "Result 2 needs a boolean 'met'"),
            ([{"met": True}, "yes"], "Result 2 must be an object"),
            ("all", "results must be a list"),
        ],
    )
    async def test_malformed_results_rejected(self, services, results, message):
        await services.quality.create_quality_checklist("Docs", "", "document", [], created_by="qa")

        with pytest.raises(OperationError, match=message):
            await services.quality.evaluate_deliverable("D-001", "QC-001", results, evaluated_by="reviewer")
        assert await services.quality.get_checklist_results_for_deliverable("D-001") == []
