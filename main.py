from __future__ import annotations

import logging
import os
from dotenv import load_dotenv

load_dotenv()


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger(__name__).info(
        "TallyMind starting data_dir=%s", os.getenv("TALLYMIND_DATA_DIR") or "<memory>"
    )


configure_logging()

from interface.api import app
from interface.cli import main as cli_main

if __name__ == "__main__":
    cli_main()
