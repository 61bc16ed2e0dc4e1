"""
Integrations package initialization.
Exports the upstream API clients.
"""
from .lex import LexClient
from .zoho import ZohoClient
from .zoho_auth import ZohoTokenProvider

__all__ = [
    "LexClient",
    "ZohoClient",
    "ZohoTokenProvider",
]
