# Managers module exports. session_manager sits on top of the provider
# packages, so it is imported explicitly (managers.session_manager).
from managers.credential_store import CredentialStore

__all__ = [
    "CredentialStore",
]
