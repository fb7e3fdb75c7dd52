"""Run the API server: ``python -m peekstash``."""

import uvicorn

from peekstash.api import create_app
from peekstash.config import get_settings


def main() -> None:
    settings = get_settings()
    # log_config=None keeps uvicorn from replacing our logging setup
    uvicorn.run(
        create_app(settings),
        host=settings.api.host,
        port=settings.api.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
