from __future__ import annotations

import logging

import uvicorn

from rental_bot.config import load_config, section
from rental_bot.logging import configure_logging
from rental_bot.web import create_app

logger = logging.getLogger(__name__)


def run() -> None:
    config = load_config()
    configure_logging(config)
    server = section("server", config)
    host = str(server.get("host", "0.0.0.0"))
    port = int(server.get("port", 3000))
    logger.info("HTTP server listening on %s:%s", host, port)
    uvicorn.run(create_app(config=config), host=host, port=port, log_config=None)


if __name__ == "__main__":
    run()
