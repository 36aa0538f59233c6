from .bot import create_bot

__all__ = ["create_bot"]
