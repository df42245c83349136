import os

import uvicorn

from personal_cfo.app import app
from personal_cfo.core import settings
from personal_cfo.logger import get_logging_config


def run() -> None:
    host = os.getenv("HOST", "0.0.0.0")
    port = settings.get_env_int("PORT", 3000, min_value=1)
    uvicorn.run(app, host=host, port=port, log_config=get_logging_config())


if __name__ == "__main__":
    run()
