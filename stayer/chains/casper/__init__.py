from .client import CasperClient
from .cloud import CsprCloudClient

__all__ = ["CasperClient", "CsprCloudClient"]
