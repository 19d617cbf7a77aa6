from fastapi import FastAPI
import logging
import sys

from caption_worker.app.config import Settings, load_settings
from caption_worker.app.context import Worker, build_context, build_worker
from caption_worker.app.errors import ConfigError
from caption_worker.app.routers import status as status_router

log = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app(worker: Worker) -> FastAPI:
    app = FastAPI(title="caption-worker")
    app.state.worker = worker
    app.include_router(status_router.router)

    @app.on_event("startup")
    async def _start_worker():
        s = worker.context.settings
        log.info(
            f"[worker] channel={s.WORKER_REDIS_CHANNEL} output={s.output_channel} "
            f"redis={s.WORKER_REDIS_ADDR} caption_url={s.WORKER_CAPTION_URL}"
        )
        app.state.subscriber = worker.start()
        log.info("[worker] Routes: /health /status")

    @app.on_event("shutdown")
    async def _stop_worker():
        worker.close()
        worker.context.close()

    return app


def bootstrap(settings: Settings) -> Worker:
    """Build the worker or exit the process when config is unusable."""
    try:
        return build_worker(build_context(settings))
    except ConfigError as e:
        log.critical(f"[FATAL] {e}")
        sys.exit(1)


def main(settings: Settings = None) -> None:
    settings = settings or load_settings()
    configure_logging(settings.LOG_LEVEL)
    worker = bootstrap(settings)

    if settings.STATUS_ENABLED:
        import uvicorn

        uvicorn.run(create_app(worker), host="0.0.0.0", port=settings.PORT_WORKER)
        return

    try:
        worker.run()
    except KeyboardInterrupt:
        pass
    finally:
        worker.close()
        worker.context.close()


if __name__ == "__main__":
    main()
