from .app import create_app
from .routes import build_graph_router

__all__ = ["build_graph_router", "create_app"]
