"""Run the hosted relay server: python -m experience_remote.relay"""

import logging
import sys

import uvicorn

from .. import config


def main():
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    from .server import app

    uvicorn.run(app, host=config.RELAY_HOST, port=config.RELAY_PORT)


if __name__ == "__main__":
    main()
