"""Console entrypoint: serve the bridge with uvicorn on $PORT."""

import uvicorn

from wabridge.settings import load_settings

from .factory import create_app


def main() -> None:
    settings = load_settings()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
