from __future__ import annotations

import uvicorn

from authgate.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run("authgate.app:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
