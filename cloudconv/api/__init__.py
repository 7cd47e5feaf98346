from .client import CloudConvertClient

__all__ = ["CloudConvertClient"]
