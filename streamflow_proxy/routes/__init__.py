from .proxy import proxy_router
from .extractor import extractor_router
from .streaming import streaming_router

__all__ = ["proxy_router", "extractor_router", "streaming_router"]
