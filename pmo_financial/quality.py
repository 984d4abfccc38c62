"""
Quality Checklist Module
Checklists per deliverable type, weighted evaluation and stored results
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .dates import utcnow
from .errors import NotFoundError, ValidationError, wraps_errors
from .events import EventBus
from .models import (
    DELIVERABLE_TYPES,
    QUALITY_CHECKLIST_SCHEMA,
    QUALITY_CRITERION_SCHEMA,
    QUALITY_RESULT_SCHEMA,
    QualityChecklistResult,
    QualityChecklistRow,
    QualityCriterion,
)
from .row_store import RowStore, schema_range
from .schema import decode_rows

LOGGER = logging.getLogger(__name__)

CRITERION_CATEGORIES = ("completeness", "accuracy", "quality", "compliance", "clarity")

# (name, description, category, required, weight, guidance)
_Criterion = Tuple[str, str, str, bool, float, str]

DEFAULT_QUALITY_CRITERIA: Dict[str, Tuple[_Criterion, ...]] = {
    "document": (
        ("Completeness", "All required sections are present and complete", "completeness", True, 10,
         "Check that all sections from the template are included"),
        ("Accuracy", "Information is accurate and factually correct", "accuracy", True, 10,
         "Verify facts, figures, and references"),
        ("Clarity", "Content is clear, concise, and well-organized", "clarity", True, 8,
         "Check for logical flow and readability"),
        ("Formatting", "Document follows formatting standards", "quality", False, 5,
         "Check headers, fonts, spacing, and styles"),
        ("Grammar and Spelling", "No grammatical or spelling errors", "quality", False, 5,
         "Run spell check and grammar check"),
    ),
    "design": (
        ("Requirements Coverage", "Design addresses all requirements", "completeness", True, 10,
         "Trace design elements back to requirements"),
        ("Technical Feasibility", "Design is technically feasible and implementable", "accuracy", True, 10,
         "Verify technical approach is sound"),
        ("Scalability", "Design can scale to meet future needs", "quality", True, 8,
         "Consider growth and expansion scenarios"),
        ("Standards Compliance", "Follows industry and organizational standards", "compliance", True, 8,
         "Check against applicable standards"),
        ("Documentation Quality", "Design is well-documented with clear diagrams", "clarity", False, 6,
         "Assess clarity of diagrams and explanations"),
    ),
    "software": (
        ("Functionality", "Software meets all functional requirements", "completeness", True, 10,
         "Test all required features"),
        ("Code Quality", "Code follows best practices and standards", "quality", True, 9,
         "Review code for maintainability and readability"),
        ("Testing Coverage", "Adequate unit and integration tests", "quality", True, 9,
         "Check test coverage metrics"),
        ("Security", "No security vulnerabilities", "compliance", True, 10,
         "Run security scans and review for vulnerabilities"),
        ("Performance", "Meets performance requirements", "quality", False, 7,
         "Run performance tests"),
    ),
    "hardware": (
        ("Specifications Met", "Hardware meets all specifications", "completeness", True, 10,
         "Verify against spec sheet"),
        ("Quality Testing", "Passed all quality tests", "quality", True, 10,
         "Review test results"),
        ("Documentation", "Complete documentation and manuals", "completeness", True, 7,
         "Check user manuals and technical docs"),
        ("Safety Compliance", "Meets safety standards", "compliance", True, 10,
         "Verify safety certifications"),
    ),
    "training": (
        ("Learning Objectives", "Clear and measurable learning objectives", "completeness", True, 9,
         "Check that objectives are SMART"),
        ("Content Quality", "Content is accurate and relevant", "accuracy", True, 10,
         "Verify content accuracy and relevance"),
        ("Engagement", "Materials are engaging and interactive", "quality", False, 7,
         "Assess engagement strategies"),
        ("Assessment Methods", "Appropriate methods to assess learning", "completeness", True, 8,
         "Review quizzes, exercises, and evaluations"),
    ),
    "report": (
        ("Executive Summary", "Clear executive summary present", "completeness", True, 8,
         "Check for concise executive summary"),
        ("Data Accuracy", "All data and statistics are accurate", "accuracy", True, 10,
         "Verify data sources and calculations"),
        ("Analysis Quality", "Thorough and insightful analysis", "quality", True, 9,
         "Assess depth and quality of analysis"),
        ("Recommendations", "Clear, actionable recommendations", "completeness", True, 8,
         "Check that recommendations are specific and actionable"),
    ),
    "presentation": (
        ("Content Coverage", "All required topics covered", "completeness", True, 9,
         "Verify all topics are addressed"),
        ("Visual Design", "Professional and consistent design", "quality", False, 7,
         "Check slide design and formatting"),
        ("Clarity", "Clear and easy to understand", "clarity", True, 9,
         "Assess clarity of message"),
    ),
    "prototype": (
        ("Functionality", "Demonstrates key functionality", "completeness", True, 10,
         "Test core features"),
        ("Usability", "Easy to use and understand", "quality", True, 8,
         "Conduct usability testing"),
        ("Technical Viability", "Demonstrates technical feasibility", "accuracy", True, 9,
         "Assess technical approach"),
    ),
    "data": (
        ("Data Quality", "Data is accurate and complete", "accuracy", True, 10,
         "Check for errors, duplicates, and completeness"),
        ("Data Format", "Data follows specified format", "compliance", True, 9,
         "Verify format compliance"),
        ("Documentation", "Data dictionary and documentation provided", "completeness", True, 8,
         "Check for data dictionary and metadata"),
    ),
    "other": (
        ("Requirements Met", "Deliverable meets stated requirements", "completeness", True, 10,
         "Verify against requirements"),
        ("Quality Standards", "Meets quality standards", "quality", True, 9,
         "Assess overall quality"),
    ),
}


def criterion_id(checklist_id: str, position: int) -> str:
    return f"{checklist_id}-C{position:03d}"


def default_criteria(checklist_id: str, deliverable_type: Optional[str]) -> List[QualityCriterion]:
    defaults = DEFAULT_QUALITY_CRITERIA.get(deliverable_type or "", ())
    return [
        QualityCriterion(
            criterion_id=criterion_id(checklist_id, position),
            checklist_id=checklist_id,
            name=name,
            description=description,
            category=category,
            required=required,
            weight=float(weight),
            guidance=guidance,
        )
        for position, (name, description, category, required, weight, guidance) in enumerate(defaults, start=1)
    ]


def calculate_quality_score(
    criteria: Sequence[QualityCriterion], results: Sequence[Mapping[str, Any]]
) -> Tuple[int, bool]:
    """
    Weighted score and pass flag for an evaluation

    Args:
        criteria: Checklist criteria in order
        results: ``{"met": bool}`` entries matched to ``criteria`` by position;
            surplus results are ignored and missing ones count as not met

    Returns:
        (overall_score 0-100, passed). ``passed`` requires every required
        criterion to be met, whatever the score.
    """
    weighted = 0.0
    total_weight = 0.0
    passed = True
    for position, criterion in enumerate(criteria):
        met = bool(results[position].get("met")) if position < len(results) else False
        weighted += (100 if met else 0) * criterion.weight
        total_weight += criterion.weight
        if criterion.required and not met:
            passed = False
    score = round(weighted / total_weight) if total_weight > 0 else 0
    return score, passed



def validate_results(results: Any) -> None:
    """Raise ``ValidationError`` unless ``results`` is a list of ``{"met": bool}`` objects."""

    if isinstance(results, (str, bytes)) or not isinstance(results, Sequence):
        raise ValidationError("results must be a list")
    for position, result in enumerate(results, 1):
        if not isinstance(result, Mapping):
            raise ValidationError(f"Result {position} must be an object")
        if not isinstance(result.get("met"), bool):
            raise ValidationError(f"Result {position} needs a boolean 'met'")

@dataclass
class QualityChecklist:
    checklist_id: str
    name: str
    description: str
    deliverable_type: str
    created_by: str
    created_date: Optional[datetime]
    active: bool
    criteria: List[QualityCriterion] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checklist_id": self.checklist_id,
            "name": self.name,
            "description": self.description,
            "deliverable_type": self.deliverable_type,
            "created_by": self.created_by,
            "created_date": self.created_date.isoformat() if self.created_date else None,
            "active": self.active,
            "criteria": [criterion.to_dict() for criterion in self.criteria],
        }


def _criterion_input(checklist_id: str, position: int, raw: Mapping[str, Any]) -> QualityCriterion:
    name = raw.get("name")
    if not name:
        raise ValidationError(f"Criterion {position} needs a name")
    category = raw.get("category", "quality")
    if category not in CRITERION_CATEGORIES:
        raise ValidationError(f"Criterion {position} has unknown category '{category}'")
    try:
        weight = float(raw.get("weight", 1))
    except (TypeError, ValueError):
        raise ValidationError(f"Criterion {position} weight must be a number") from None
    if weight < 0:
        raise ValidationError(f"Criterion {position} weight must be non-negative")
    return QualityCriterion(
        criterion_id=criterion_id(checklist_id, position),
        checklist_id=checklist_id,
        name=str(name),
        description=str(raw.get("description", "")),
        category=category,
        required=bool(raw.get("required", False)),
        weight=weight,
        guidance=str(raw.get("guidance", "")),
    )


class QualityService:
    """Quality checklists, criteria and evaluation results."""

    def __init__(self, store: RowStore, events: Optional[EventBus] = None) -> None:
        self.store = store
        self.events = events

    async def _stored_criteria(self, checklist_id: str) -> List[QualityCriterion]:
        rows = await self.store.read_data_rows(QUALITY_CRITERION_SCHEMA)
        return [
            criterion
            for criterion in decode_rows(QUALITY_CRITERION_SCHEMA, rows, QualityCriterion, LOGGER)
            if criterion.checklist_id == checklist_id
        ]

    async def _assemble(self, header: QualityChecklistRow, deliverable_type: Optional[str]) -> QualityChecklist:
        criteria = await self._stored_criteria(header.checklist_id)
        if not criteria:
            criteria = default_criteria(header.checklist_id, deliverable_type)
        return QualityChecklist(
            checklist_id=header.checklist_id,
            name=header.name,
            description=header.description,
            deliverable_type=header.deliverable_type,
            created_by=header.created_by,
            created_date=header.created_date,
            active=header.active,
            criteria=criteria,
        )

    @wraps_errors("create quality checklist")
    async def create_quality_checklist(
        self,
        name: str,
        description: str,
        deliverable_type: Optional[str],
        criteria: Sequence[Mapping[str, Any]],
        created_by: str,
    ) -> QualityChecklist:
        """
        Store a checklist header and its criteria

        Args:
            deliverable_type: One of the deliverable types, or None/"all" for
                a checklist that applies to every type
            criteria: Dicts with name, description, category, required, weight
                and guidance; when empty the type's defaults are used on read
        """
        if not name:
            raise ValidationError("Checklist name is required")
        deliverable_type = deliverable_type or "all"
        if deliverable_type != "all" and deliverable_type not in DELIVERABLE_TYPES:
            raise ValidationError(f"Unknown deliverable type: {deliverable_type}")

        checklist_id = await self.store.next_id(QUALITY_CHECKLIST_SCHEMA)
        parsed = [_criterion_input(checklist_id, position, raw) for position, raw in enumerate(criteria, start=1)]

        header = QualityChecklistRow(
            checklist_id=checklist_id,
            name=name,
            description=description,
            deliverable_type=deliverable_type,
            created_by=created_by,
            created_date=utcnow(),
            active=True,
        )
        await self.store.append_record(QUALITY_CHECKLIST_SCHEMA, header.to_row())
        if parsed:
            await self.store.append_rows(
                schema_range(QUALITY_CRITERION_SCHEMA),
                [criterion.to_row() for criterion in parsed],
            )
        LOGGER.info("Created quality checklist %s (%s, %d criteria)", checklist_id, deliverable_type, len(parsed))

        return QualityChecklist(
            checklist_id=checklist_id,
            name=name,
            description=description,
            deliverable_type=deliverable_type,
            created_by=created_by,
            created_date=header.created_date,
            active=True,
            criteria=parsed or default_criteria(checklist_id, deliverable_type),
        )

    @wraps_errors("get checklist")
    async def get_checklist_for_type(self, deliverable_type: str) -> Optional[QualityChecklist]:
        """First active checklist for ``deliverable_type`` or for all types."""

        if deliverable_type not in DELIVERABLE_TYPES:
            raise ValidationError(f"Unknown deliverable type: {deliverable_type}")
        rows = await self.store.read_data_rows(QUALITY_CHECKLIST_SCHEMA)
        for header in decode_rows(QUALITY_CHECKLIST_SCHEMA, rows, QualityChecklistRow, LOGGER):
            if header.active and header.deliverable_type in (deliverable_type, "all"):
                return await self._assemble(header, deliverable_type)
        return None

    @wraps_errors("read checklist")
    async def read_checklist_by_id(self, checklist_id: str) -> Optional[QualityChecklist]:
        match = await self.store.find_record(QUALITY_CHECKLIST_SCHEMA, checklist_id)
        if match is None:
            return None
        header = QualityChecklistRow.from_row(match.row)
        deliverable_type = None if header.deliverable_type == "all" else header.deliverable_type
        return await self._assemble(header, deliverable_type)

    @wraps_errors("evaluate deliverable")
    async def evaluate_deliverable(
        self,
        deliverable_id: str,
        checklist_id: str,
        results: Sequence[Mapping[str, Any]],
        evaluated_by: str,
        review_id: Optional[str] = None,
        comments: str = "",
    ) -> Dict[str, Any]:
        """
        Score a deliverable against a checklist and store the result

        Returns:
            Dict of the stored result fields plus ``results``, the per
            criterion outcomes keyed by criterion_id
        """
        validate_results(results)
        checklist = await self.read_checklist_by_id(checklist_id)
        if checklist is None:
            raise NotFoundError("Checklist not found")

        criterion_results = []
        for position, result in enumerate(results):
            cid = (
                checklist.criteria[position].criterion_id
                if position < len(checklist.criteria)
                else criterion_id(checklist_id, position + 1)
            )
            criterion_results.append({"criterion_id": cid, "met": bool(result.get("met")), "notes": result.get("notes", "")})

        overall_score, passed = calculate_quality_score(checklist.criteria, results)
        record = QualityChecklistResult(
            result_id=await self.store.next_id(QUALITY_RESULT_SCHEMA),
            checklist_id=checklist_id,
            deliverable_id=deliverable_id,
            review_id=review_id,
            evaluated_by=evaluated_by,
            evaluated_date=utcnow(),
            overall_score=float(overall_score),
            passed=passed,
            comments=comments,
        )
        await self.store.append_record(QUALITY_RESULT_SCHEMA, record.to_row())
        LOGGER.info("Deliverable %s scored %d against %s (passed=%s)", deliverable_id, overall_score, checklist_id, passed)

        if self.events:
            await self.events.publish(
                "quality_check_passed" if passed else "quality_check_failed",
                {"deliverable_id": deliverable_id, "result_id": record.result_id, "overall_score": overall_score},
                user_id=evaluated_by,
            )

        payload = record.to_dict()
        payload["results"] = criterion_results
        return payload

    @wraps_errors("get checklist results")
    async def get_checklist_results_for_deliverable(self, deliverable_id: str) -> List[QualityChecklistResult]:
        rows = await self.store.read_data_rows(QUALITY_RESULT_SCHEMA)
        return [
            result
            for result in decode_rows(QUALITY_RESULT_SCHEMA, rows, QualityChecklistResult, LOGGER)
            if result.deliverable_id == deliverable_id
        ]
