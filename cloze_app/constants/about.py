"""Static metadata describing ClozeQuiz."""

APP_NAME = "ClozeQuiz"
APP_VERSION = "0.1"
APP_LICENSE = "MIT License"
APP_ABOUT_TEXT = (
    "ClozeQuiz lets teachers write fill-in-the-blank quizzes and lets students "
    "complete them against a per-question timer using a shuffled word bank."
)

HELP_TEXT = (
    "Mark every blank in a question with three or more underscores (up to five blanks "
    "per question) and list one correct answer per blank, left to right. Quizzes can "
    "also be imported from a .txt file:\n\n"
    "TITLE: Capitals\n"
    "TIMELIMIT: 30\n"
    "REVEAL: yes\n\n"
    "---\n\n"
    "Q: The capital of Brazil is ___.\n"
    "ANSWERS: Brasília\n"
    "DISTRACTORS: Rio de Janeiro | São Paulo\n\n"
    "Q: ___ and ___ are primary colors.\n"
    "ANSWERS: Red | Blue\n"
    "DISTRACTORS: Green"
)
