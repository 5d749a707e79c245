"""Identity lookup — resolves handles to owning addresses."""

from handlepay.identity.registry import IdentityLookup, InMemoryIdentityRegistry

__all__ = ["IdentityLookup", "InMemoryIdentityRegistry"]
