from __future__ import annotations

import uvicorn

from .config import load_settings


def main() -> None:
    """Run the app with uvicorn on the configured host and port."""
    settings = load_settings()
    uvicorn.run("vecinito.app:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
