"""
Submission grading: execute, normalize both sides, compare.

Execution failures propagate unchanged. A query that runs but produces the
wrong answer is a normal passed=False outcome.
"""
import logging

from .comparator import ResultComparator, result_comparator
from .exceptions import UnsupportedExpectedOutput
from .normalizer import ResultNormalizer, result_normalizer
from .repository import ProblemRepository
from .schemas import GradingOutcome
from .secure_execution import QueryExecutor

logger = logging.getLogger(__name__)


class GradingService:
    def __init__(self,
                 executor: QueryExecutor,
                 problems: ProblemRepository,
                 normalizer: ResultNormalizer = result_normalizer,
                 comparator: ResultComparator = result_comparator):
        self.executor = executor
        self.problems = problems
        self.normalizer = normalizer
        self.comparator = comparator

    async def grade_submission(self, identity_id: str, problem_id: str, query: str) -> GradingOutcome:
        result = await self.executor.execute(identity_id, problem_id, query)
        problem = await self.problems.get(problem_id)
        expected_output = problem.expected_output

        actual = self.normalizer.normalize_result(result)
        try:
            expected = self.normalizer.normalize_expected(expected_output)
        except UnsupportedExpectedOutput as e:
            logger.warning(f"Problem {problem_id} has an ungradable expected output: {e}")
            return GradingOutcome(
                passed=False,
                execution_time_ms=result.execution_time_ms,
                row_count=result.row_count,
                reason=e.message
            )

        comparison = self.comparator.compare(actual, expected, expected_output.kind)
        if not comparison.passed:
            logger.info(f"Submission for {identity_id}/{problem_id} did not match: {comparison.reason}")

        return GradingOutcome(
            passed=comparison.passed,
            execution_time_ms=result.execution_time_ms,
            row_count=result.row_count,
            reason=comparison.reason
        )
