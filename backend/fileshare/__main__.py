"""Run the API with uvicorn: ``python -m fileshare``."""
import uvicorn

from fileshare.config import settings
from fileshare.logging_config import configure_logging


def main() -> None:
    configure_logging()
    uvicorn.run("fileshare.main:app", host="0.0.0.0", port=settings.API_PORT, log_config=None)


if __name__ == "__main__":
    main()
