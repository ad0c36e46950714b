from .adapter import InAppAdapter

__all__ = ["InAppAdapter"]
