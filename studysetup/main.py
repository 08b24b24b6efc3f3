"""Run the study-setup API with uvicorn.

    studysetup-server            # or: python -m studysetup.main

Reads PORT (default 8000) and LOG_LEVEL (default INFO) from the environment.
"""

from __future__ import annotations

import logging
import os

import uvicorn

from studysetup.server import create_app


def main() -> None:
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run(create_app(), host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
