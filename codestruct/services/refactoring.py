"""Refactoring suggestions: external generation plus local verification."""

import logging
from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from codestruct.core.config import AnalysisOptions
from codestruct.core.exceptions import GeneratorUnavailableError
from codestruct.schemas.issue import Issue, IssueType
from codestruct.schemas.refactoring import RefactoringSuggestion, VerificationRequest
from codestruct.services.source import detect_language
from codestruct.services.verifier import RefactoringVerifier

logger = logging.getLogger(__name__)


@runtime_checkable
class RefactoringGenerator(Protocol):
    """Opaque text-in/text-out oracle that proposes a rewrite.

    Implementations raise on failure; their output is never trusted to parse.
    """

    def generate(self, original_code: str, issue_type: IssueType, issue_context: Mapping[str, Any]) -> str:
        ...


def issue_context(issue: Issue) -> dict[str, Any]:
    """The details of an issue a generator may use to steer its rewrite."""
    return {
        "file_path": issue.file_path,
        "function_name": issue.function_name,
        "class_name": issue.class_name,
        "line_start": issue.line_start,
        "line_end": issue.line_end,
        "severity": issue.severity.value,
        "description": issue.description,
        "recommendation": issue.recommendation,
        "metadata": issue.metadata.model_dump(),
    }


class RefactoringService:
    """Asks a generator for a candidate and verifies it before anyone sees it."""

    def __init__(
        self,
        generator: RefactoringGenerator,
        options: AnalysisOptions | None = None,
        verifier: RefactoringVerifier | None = None,
    ):
        self.generator = generator
        self.options = options or AnalysisOptions()
        self.verifier = verifier or RefactoringVerifier(self.options)

    def suggest(self, issue: Issue, original_code: str, language: str | None = None) -> RefactoringSuggestion:
        """Generate and verify a suggestion for one issue.

        Raises:
            GeneratorUnavailableError: If the issue type is excluded or the
                generator fails; no suggestion is created in that case
        """
        if issue.type.value in self.options.refactoring_excluded_types:
            raise GeneratorUnavailableError(issue.type.value, "automatic refactoring is disabled for this issue type")

        language = language or detect_language(issue.file_path)
        if language is None:
            raise GeneratorUnavailableError(issue.type.value, f"unknown language for {issue.file_path}")

        try:
            candidate = self.generator.generate(original_code, issue.type, issue_context(issue))
        except Exception as e:
            logger.error(f"Refactoring generator failed for issue {issue.id}: {e}")
            raise GeneratorUnavailableError(issue.type.value, str(e)) from e

        if not isinstance(candidate, str) or not candidate.strip():
            raise GeneratorUnavailableError(issue.type.value, "generator returned no code")

        suggestion = self.verifier.verify(VerificationRequest(
            original_code=original_code,
            refactored_code=candidate,
            language=language,
            file_path=issue.file_path,
            issue_id=issue.id,
            issue_type=issue.type,
            explanation=issue.recommendation,
        ))
        logger.info(
            f"Suggestion for issue {issue.id} badged {suggestion.verification_badge.value} "
            f"with {len(suggestion.changes)} changed lines"
        )
        return suggestion
