from .server import SseSessionTransport, create_app

__all__ = [
    "create_app",
    "SseSessionTransport",
]
