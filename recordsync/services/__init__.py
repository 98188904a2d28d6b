"""Service layer for the synchronization engine."""

from .auth import TokenProvider, StaticTokenProvider, ClientCredentialsTokenProvider
from .scheduler import RateLimiter, ItemOutcome, run_batch, chunked
from .transformer import TransformEngine, format_display_name
from .upsert import UpsertCoordinator
from .linker import AssociationLinker
from .membership import ListMembership

__all__ = [
    "TokenProvider",
    "StaticTokenProvider",
    "ClientCredentialsTokenProvider",
    "RateLimiter",
    "ItemOutcome",
    "run_batch",
    "chunked",
    "TransformEngine",
    "format_display_name",
    "UpsertCoordinator",
    "AssociationLinker",
    "ListMembership",
]
