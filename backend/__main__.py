# backend/__main__.py
import uvicorn

from config.settings import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run("backend.app:app", host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
