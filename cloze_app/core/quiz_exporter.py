"""Utilities for exporting quizzes to the plain-text format used for imports."""

from __future__ import annotations

from pathlib import Path

from cloze_app.core.models import ClozeQuestion, Quiz

LIST_SEPARATOR = "|"
ESCAPED_SEPARATOR = "\\|"


def save_quiz_to_file(file_path: Path, quiz: Quiz, questions: list[ClozeQuestion]) -> None:
    """Persist the quiz to disk in the text import format."""

    if not questions:
        raise ValueError("Cannot export an empty quiz.")

    file_path = file_path.resolve()
    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_text(serialize_quiz(quiz, questions), encoding="utf-8")


def serialize_quiz(quiz: Quiz, questions: list[ClozeQuestion]) -> str:
    ordered = sorted(questions, key=lambda q: q.position)
    blocks = [_serialize_header(quiz)] + [_serialize_question(question) for question in ordered]
    return "\n\n---\n\n".join(blocks) + "\n"


def _serialize_header(quiz: Quiz) -> str:
    lines = [f"TITLE: {quiz.title}"]
    if quiz.description:
        lines.append(f"DESCRIPTION: {' '.join(quiz.description.split())}")
    lines.append(f"TIMELIMIT: {quiz.time_limit_seconds}")
    lines.append(f"REVEAL: {'yes' if quiz.reveal_answers else 'no'}")
    return "\n".join(lines)


def _serialize_question(question: ClozeQuestion) -> str:
    question_lines = [line for line in question.text.splitlines() if line.strip()] or [question.text]
    lines = [f"Q: {question_lines[0]}"]
    lines.extend(question_lines[1:])
    lines.append(f"ANSWERS: {_join_list(question.correct_answers)}")
    if question.distractors:
        lines.append(f"DISTRACTORS: {_join_list(question.distractors)}")
    return "\n".join(lines)


def _join_list(items: list[str]) -> str:
    return f" {LIST_SEPARATOR} ".join(item.replace(LIST_SEPARATOR, ESCAPED_SEPARATOR) for item in items)
