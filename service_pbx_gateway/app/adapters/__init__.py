"""
Adapters package for the gateway.

Contains the HTTP plumbing between the gateway and the PBX relay:

- RequestDispatcher: URL composition, one round trip, JSON parsing
- ErrorClassifier: maps outcomes onto the gateway error kinds
- PbxAuthClient: token acquisition (the one unauthenticated call)

Keep adapters thin; payload normalization belongs in app.domain.
"""

from .auth_client import PbxAuthClient
from .dispatcher import RequestDispatcher
from .error_classifier import ErrorClassifier

__all__ = [
    "ErrorClassifier",
    "PbxAuthClient",
    "RequestDispatcher",
]
