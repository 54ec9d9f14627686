"""WebSocket server exposing the multi-session speech API.

Public API:
    - DictationWebSocketServer: Main WebSocket server class
    - WebSocketCallback: Per-connection session callback
    - main: Main entry point function
"""

from .callback import WebSocketCallback
from .core import DictationWebSocketServer
from .main import main, start_server

__all__ = [
    "DictationWebSocketServer",
    "WebSocketCallback",
    "main",
    "start_server",
]
