"""Application entry point for the ClozeQuiz server."""

from __future__ import annotations

from cloze_app.core.quiz_manager import QuizManager
from cloze_app.server.api_server import start_api_server
from cloze_app.utils.logging_config import configure_logging
from cloze_app.utils.settings import get_settings


def main() -> None:
    """Initialize logging, then serve the API until the server thread exits."""
    settings = get_settings()
    logger = configure_logging(settings.log_level.upper())
    logger.info("Starting ClozeQuiz server on %s:%d", settings.host, settings.port)

    quiz_manager = QuizManager(session_retention_seconds=settings.session_retention_seconds)
    server_thread = start_api_server(
        quiz_manager=quiz_manager,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
    try:
        server_thread.join()
    except KeyboardInterrupt:
        logger.info("Shutting down.")


if __name__ == "__main__":
    main()
