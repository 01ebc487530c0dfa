from .client import AmeliPortalClient, PortalCredentials

__all__ = [
    "AmeliPortalClient",
    "PortalCredentials",
]
