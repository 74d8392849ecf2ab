from .server_api import PongResponse, ServerApi

__all__ = ["PongResponse", "ServerApi"]
