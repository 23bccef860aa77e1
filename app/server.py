"""
Process entry point: `python -m app.server`.

An exception that escapes every handler (main thread or a worker/scheduler thread) leaves the
process in an unknown state, so it is logged, the scheduler and database pool are closed and the
process exits with status 1 instead of carrying on.
"""
import logging
import os
import sys
import threading

import uvicorn

from app.config import get_settings

log = logging.getLogger("uvicorn.error")


def _shutdown_and_exit(exc_type, exc_value, exc_tb) -> None:
    log.critical("Unhandled exception, shutting down", exc_info=(exc_type, exc_value, exc_tb))
    from app.database import engine
    from app.services.scheduler import get_scheduler

    try:
        get_scheduler().shutdown()
    finally:
        engine.dispose()
        logging.shutdown()
        os._exit(1)


def _thread_excepthook(args: threading.ExceptHookArgs) -> None:
    if args.exc_type is SystemExit:
        return
    _shutdown_and_exit(args.exc_type, args.exc_value, args.exc_traceback)


def install_fault_handlers() -> None:
    sys.excepthook = _shutdown_and_exit
    threading.excepthook = _thread_excepthook


def main() -> None:
    settings = get_settings()
    install_fault_handlers()
    uvicorn.run(
        "app.main:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8000")),
        reload=False,
        log_level="debug" if settings.debug else "info",
    )


if __name__ == "__main__":
    main()
