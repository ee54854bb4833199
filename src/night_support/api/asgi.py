"""ASGI entrypoint for the night support API."""

from night_support.api.app import create_app
from night_support.containers import build_container

app = create_app(build_container())
