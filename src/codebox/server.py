from __future__ import annotations
import socket
import sys

import uvicorn

from .logging import setup_logging
from .settings import get_settings


def port_in_use(host: str, port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        try:
            s.bind((host, port))
        except OSError:
            return True
    return False


def main() -> None:
    settings = get_settings()
    log = setup_logging(settings.log_level)

    # port bận thì dừng luôn, không để uvicorn tự retry
    if port_in_use(settings.host, settings.port):
        log.error("port_in_use", port=settings.port, hint="stop the other process or set PORT / CODEBOX_PORT")
        sys.exit(1)

    from .api import app
    log.info("server_starting", host=settings.host, port=settings.port, backend=settings.backend)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
