"""
Credential domain module
"""
from .models import ClientCredential, marker_for
from .authorized_keys import AuthorizationList
from .store import CredentialStore, CredentialListing, fingerprint_of

__all__ = [
    "ClientCredential",
    "marker_for",
    "AuthorizationList",
    "CredentialStore",
    "CredentialListing",
    "fingerprint_of",
]
