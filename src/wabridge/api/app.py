"""ASGI entrypoint: `uvicorn wabridge.api.app:app --port $PORT`."""

from .factory import create_app

app = create_app()
