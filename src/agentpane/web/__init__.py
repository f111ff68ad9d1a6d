"""Web 控制接口"""

from .api import setup_routes
from .app import create_app, main, start_server

__all__ = ["setup_routes", "create_app", "start_server", "main"]
