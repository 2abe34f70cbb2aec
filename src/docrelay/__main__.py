"""Run the server with `python -m docrelay`."""

from __future__ import annotations

import logging

import uvicorn

from docrelay.config import Settings


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = Settings.from_env()
    if not settings.chat.enabled:
        logging.getLogger("docrelay").warning(
            "DOCRELAY_CHAT_SECRET is not set; the chat socket will refuse connections"
        )

    from docrelay.api.main import create_app

    uvicorn.run(
        create_app(settings),
        host=settings.server.host,
        port=settings.server.port,
    )


if __name__ == "__main__":
    main()
