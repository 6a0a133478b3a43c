"""FastAPI application and routes."""

from chain_engine.api.app import create_app
from chain_engine.api.routes import router

__all__ = ["create_app", "router"]
