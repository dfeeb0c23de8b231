"""ASGI entrypoint: uvicorn cityventure.api.app:app"""

from cityventure.api.factory import create_app

app = create_app()
