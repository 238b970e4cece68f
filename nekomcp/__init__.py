"""nekomcp: a cat-interruption MCP server with a carousel widget."""

__version__ = "0.1.0"

from .app import create_app
from .config import Settings, load_settings
from .exceptions import NekoMCPException, SessionNotFound, UpstreamError
from .router import SessionRegistry, SessionRouter

__all__ = [
    "__version__",
    "create_app",
    "Settings",
    "load_settings",
    "NekoMCPException",
    "SessionNotFound",
    "UpstreamError",
    "SessionRegistry",
    "SessionRouter",
]
