"""Run the API with uvicorn: ``python -m stock_api.main``."""

import uvicorn

from stock_api.app import create_app
from stock_config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=8000, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
