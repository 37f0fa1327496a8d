"""
Validation Engine
=================
Post-parse validation and reporting.

After parsing each document, generates a report:
    - Total Questions / Cloze Questions / Total Blanks
    - Clean Questions (no issues at all)
    - Duplicate Question IDs
    - Questions Missing Answer
    - Questions With Non-Sequential Cloze IDs
    - Element Stream Mismatches
    - Issue breakdown by type

Never silently ignores failures.
"""

from __future__ import annotations

import logging
from collections import Counter

from .models import (
    IssueType,
    ParsedQuestion,
    ValidationReport,
)

logger = logging.getLogger(__name__)


class ValidationEngine:
    """
    Validates assembled questions and produces a report.
    """

    def validate(
        self,
        questions: list[ParsedQuestion],
        skipped_blocks: int = 0,
    ) -> ValidationReport:
        """
        Run full validation on assembled questions.

        Args:
            questions: Questions to validate.
            skipped_blocks: Blocks dropped by the extractor (unknown TYPE).

        Returns:
            ValidationReport with all detected issues.
        """
        report = ValidationReport(skipped_blocks=skipped_blocks)

        if not questions:
            logger.warning("No questions to validate")
            return report

        report.total_questions = len(questions)

        id_counts = Counter(q.id for q in questions)
        report.duplicate_question_ids = sorted(
            qid for qid, count in id_counts.items() if count > 1
        )
        if report.duplicate_question_ids:
            logger.warning(
                f"Duplicate question ids: {', '.join(report.duplicate_question_ids)}"
            )

        issue_counts: dict[str, int] = {}

        for q in questions:
            if q.is_cloze:
                report.cloze_questions += 1
                report.total_blanks += q.blank_count

            if not q.issues and id_counts[q.id] == 1:
                report.clean_questions += 1

            for issue in q.issues:
                key = issue.type.value
                issue_counts[key] = issue_counts.get(key, 0) + 1

                if issue.type == IssueType.MISSING_ANSWER:
                    report.questions_missing_answer.append(q.id)
                elif issue.type == IssueType.NON_SEQUENTIAL_CLOZE_IDS:
                    report.questions_with_non_sequential_ids.append(q.id)
                elif issue.type == IssueType.ELEMENT_STREAM_MISMATCH:
                    report.inconsistent_questions.append(q.id)

        if report.duplicate_question_ids:
            issue_counts[IssueType.DUPLICATE_QUESTION_ID.value] = sum(
                id_counts[qid] for qid in report.duplicate_question_ids
            )

        report.issue_breakdown = issue_counts

        # Log summary
        logger.info("=" * 60)
        logger.info("VALIDATION REPORT")
        logger.info("=" * 60)
        logger.info(f"Total Questions: {report.total_questions}")
        logger.info(
            f"Cloze Questions: {report.cloze_questions} "
            f"({report.total_blanks} blanks)"
        )
        logger.info(
            f"Clean Questions: {report.clean_questions} "
            f"({report.clean_rate}%)"
        )
        logger.info(f"Skipped Blocks: {report.skipped_blocks}")
        logger.info(
            f"Duplicate Question IDs: {len(report.duplicate_question_ids)}"
        )
        logger.info(
            f"Questions Missing Answer: "
            f"{len(report.questions_missing_answer)}"
        )
        logger.info(
            f"Non-Sequential Cloze IDs: "
            f"{len(report.questions_with_non_sequential_ids)}"
        )
        logger.info(
            f"Element Stream Mismatches: {len(report.inconsistent_questions)}"
        )

        if report.issue_breakdown:
            logger.info("Issue Breakdown:")
            for issue_type, count in sorted(report.issue_breakdown.items()):
                logger.info(f"  • {issue_type}: {count}")

        logger.info("=" * 60)

        return report
