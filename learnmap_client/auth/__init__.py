"""
Authentication package for the LearnMap client.

This package contains durable credential storage, the in-memory credential
store, single-flight credential refresh and the session failure policy.
"""

from learnmap_client.auth.credential_store import CredentialStore
from learnmap_client.auth.refresh_coordinator import RefreshCoordinator
from learnmap_client.auth.session_policy import SessionFailurePolicy

__all__ = ['CredentialStore', 'RefreshCoordinator', 'SessionFailurePolicy']
