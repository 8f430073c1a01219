"""Utilities for importing cloze quizzes from a human-friendly text file.

File format (blocks separated by blank lines or '---'):

    TITLE: Quiz title            (optional header block, defaults to file name)
    DESCRIPTION: Short summary   (optional)
    TIMELIMIT: seconds per question (optional)
    REVEAL: yes|no               (optional, show the key after submission)

    Q: Question text with one ___ per blank. Additional lines until the
       next marker are treated as part of the question.
    ANSWERS: first blank | second blank
                                 (write a literal | as \\|)
    DISTRACTORS: decoy | another decoy   (optional)

Example:

    TITLE: Capitals
    TIMELIMIT: 30

    Q: The capital of Brazil is ___.
    ANSWERS: Brasília
    DISTRACTORS: Rio de Janeiro | São Paulo
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import re

from cloze_app.constants.quiz_constants import DEFAULT_TIME_LIMIT_SECONDS
from cloze_app.core.models import QuestionDraft, QuizDraft
from cloze_app.core.template_compiler import validate_questions


class QuizImportError(Exception):
    """Raised when a quiz definition cannot be parsed."""


@dataclass(slots=True)
class ImportedQuiz:
    """Container for imported quiz metadata and questions."""

    source_path: Path
    draft: QuizDraft


_HEADER_KEYS = ("TITLE", "DESCRIPTION", "TIMELIMIT", "REVEAL")
# A literal "|" inside an answer is written as \|.
_LIST_SPLIT = re.compile(r"(?<!\\)\|")
_TRUE_VALUES = {"yes", "y", "true", "1"}
_FALSE_VALUES = {"no", "n", "false", "0"}


def load_quiz_from_file(file_path: Path) -> ImportedQuiz:
    text = file_path.read_text(encoding="utf-8")
    draft = parse_quiz_text(text, default_title=file_path.stem)
    return ImportedQuiz(source_path=file_path, draft=draft)


def parse_quiz_text(text: str, default_title: str = "Imported quiz") -> QuizDraft:
    header: dict[str, str] = {}
    questions: list[QuestionDraft] = []
    for block in _split_blocks(text):
        if _is_header_block(block):
            if questions:
                raise QuizImportError("Quiz header must come before the first question.")
            header.update(_parse_header(block))
        else:
            questions.append(_parse_block(block))

    if not questions:
        raise QuizImportError("Quiz file did not contain any questions.")
    try:
        validated = validate_questions(questions)
    except ValueError as exc:
        raise QuizImportError(str(exc)) from exc

    return QuizDraft(
        title=header.get("TITLE") or default_title,
        questions=validated,
        time_limit_seconds=_parse_time_limit(header.get("TIMELIMIT")),
        description=header.get("DESCRIPTION") or None,
        reveal_answers=_parse_flag(header.get("REVEAL")),
    )


def _split_blocks(text: str) -> list[str]:
    blocks: list[str] = []
    current_block: list[str] = []
    for raw_line in text.splitlines():
        stripped = raw_line.strip()
        if stripped == "---":
            if current_block:
                blocks.append("\n".join(current_block).strip())
                current_block = []
            continue
        if stripped:
            current_block.append(raw_line)
        elif current_block:
            # Blank line encountered after content - finalize current block
            blocks.append("\n".join(current_block).strip())
            current_block = []
    if current_block:
        blocks.append("\n".join(current_block).strip())
    return [block for block in blocks if block]


def _is_header_block(block: str) -> bool:
    first_line = block.splitlines()[0].strip().upper()
    return any(first_line.startswith(f"{key}:") for key in _HEADER_KEYS)


def _parse_header(block: str) -> dict[str, str]:
    values: dict[str, str] = {}
    for raw_line in block.splitlines():
        line = raw_line.strip()
        key, separator, value = line.partition(":")
        key = key.strip().upper()
        if not separator or key not in _HEADER_KEYS:
            raise QuizImportError(f"Unknown header line: '{line}'.")
        values[key] = value.strip()
    return values


def _parse_block(block: str) -> QuestionDraft:
    question_lines: list[str] = []
    answers: list[str] | None = None
    distractors: list[str] = []
    in_question = False

    for raw_line in block.splitlines():
        line = raw_line.strip()
        if not line:
            continue

        upper = line.upper()
        if upper.startswith("Q:"):
            question_lines = [line[2:].strip()]
            in_question = True
            continue

        if upper.startswith("ANSWERS:"):
            answers = _split_list(line.split(":", 1)[1])
            in_question = False
            continue

        if upper.startswith("DISTRACTORS:"):
            distractors = [item for item in _split_list(line.split(":", 1)[1]) if item]
            in_question = False
            continue

        if in_question:
            question_lines.append(line)
        else:
            raise QuizImportError(
                f"Encountered text outside of a known section: '{line}'."
            )

    question_text = "\n".join(question_lines).strip()
    if not question_text:
        raise QuizImportError("Question text missing (Q: ...)")
    if answers is None:
        raise QuizImportError(f"Question '{question_text}' has no ANSWERS line.")

    return QuestionDraft(text=question_text, correct_answers=answers, distractors=distractors)


def _split_list(raw_value: str) -> list[str]:
    return [item.strip().replace("\\|", "|") for item in _LIST_SPLIT.split(raw_value)]


def _parse_time_limit(raw_value: str | None) -> int:
    if raw_value is None:
        return DEFAULT_TIME_LIMIT_SECONDS
    if not raw_value:
        raise QuizImportError("TIMELIMIT must include an integer value.")
    try:
        parsed_value = int(raw_value)
    except ValueError as exc:
        raise QuizImportError("TIMELIMIT must be an integer number of seconds.") from exc
    if parsed_value <= 0:
        raise QuizImportError("TIMELIMIT must be a positive integer.")
    return parsed_value


def _parse_flag(raw_value: str | None) -> bool:
    if raw_value is None:
        return False
    lowered = raw_value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise QuizImportError("REVEAL must be 'yes' or 'no'.")
