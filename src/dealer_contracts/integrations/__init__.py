"""External collaborators: document storage and caller identity."""

from .document_store import DocumentStore, LocalDocumentStore, HttpDocumentStore
from .identity import Action, Actor, ActorRole, IdentityDirectory, ApiKeyDirectory

__all__ = [
    'DocumentStore',
    'LocalDocumentStore',
    'HttpDocumentStore',
    'Action',
    'Actor',
    'ActorRole',
    'IdentityDirectory',
    'ApiKeyDirectory',
]
