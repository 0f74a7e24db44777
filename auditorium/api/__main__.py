"""
auditorium.api.__main__ — ``python -m auditorium.api``
=======================================================
"""

from __future__ import annotations

import logging

import uvicorn
from dotenv import load_dotenv

from auditorium.config import load_config


def main() -> None:
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    cfg = load_config()
    uvicorn.run("auditorium.api.main:app", host="0.0.0.0", port=cfg.api_port)


if __name__ == "__main__":
    main()
