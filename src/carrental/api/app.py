"""ASGI entry point: uvicorn carrental.api.app:app"""

from carrental.observability.logging import configure_root_logging

from .factory import create_app

configure_root_logging()
app = create_app()
