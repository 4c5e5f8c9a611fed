"""`netpulse` command: serve the dashboard and API with uvicorn."""

import uvicorn

from .config import get_settings
from .logging import configure_logging, get_logger

log = get_logger("main")


def main() -> None:
    settings = get_settings()
    configure_logging()

    # Run state and the busy guard live in one process
    workers = settings.server.workers
    if workers != 1:
        log.warning("workers_forced_to_one", requested=workers)
        workers = 1

    log.info(
        "server_starting",
        url=f"http://{settings.server.host}:{settings.server.port}/",
        database=str(settings.database.path),
        reload=settings.debug,
    )
    uvicorn.run(
        "netpulse.api:app",
        host=settings.server.host,
        port=settings.server.port,
        workers=workers,
        reload=settings.debug,
        log_level=settings.logging.level.lower(),
    )


if __name__ == "__main__":
    main()
