import logging

import uvicorn

from streamrelay.storage import RelaySettings


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def main():
    settings = RelaySettings.from_env()
    configure_logging(settings.log_level)
    log = logging.getLogger("server")

    config = uvicorn.Config(
        "streamrelay.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
        reload=False,
    )
    server = uvicorn.Server(config)

    log.info("Stream relay starting on %s:%d", settings.host, settings.port)
    try:
        server.run()
    except KeyboardInterrupt:
        log.info("Shutting down.")


if __name__ == "__main__":
    main()
