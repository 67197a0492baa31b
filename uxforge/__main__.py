"""Run the API with uvicorn: ``python -m uxforge``."""

import uvicorn

from uxforge.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "uxforge.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_config=None,  # structlog owns the root logger
    )


if __name__ == "__main__":
    main()
