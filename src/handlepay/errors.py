"""Error taxonomy for the handle-addressed transfer protocol.

Every error aborts the whole call. The runtime restores all participant
state captured at the start of the call, so no error ever leaves a partial
state change behind. Nothing is retried internally.

Input validation errors subclass ValueError and authorization errors
subclass PermissionError, so callers that only care about the broad
category can catch the builtin.
"""

from __future__ import annotations


class HandlePayError(Exception):
    """Base class for every protocol failure."""


class InvalidAmount(HandlePayError, ValueError):
    """Amount is zero, negative, non-integral or above uint256 where a
    positive amount is required."""


class InvalidAddress(HandlePayError, ValueError):
    """Address is malformed or is the zero address."""


class InvalidHandle(HandlePayError, ValueError):
    """Handle is empty or not a string."""


class LengthMismatch(HandlePayError, ValueError):
    """Parallel batch arrays have different lengths."""


class EmptyBatch(HandlePayError, ValueError):
    """Batch carries no recipients at all."""


class AmountMismatch(HandlePayError, ValueError):
    """Attached value differs from the declared batch total."""


class InvalidFeeRate(HandlePayError, ValueError):
    """Fee rate outside [0, ceiling] basis points."""


class InvalidShares(HandlePayError, ValueError):
    """Stakeholder shares do not sum to 10000 basis points."""


class Unauthorized(HandlePayError, PermissionError):
    """Caller is not the resolved handle owner, fee receiver,
    stakeholder, admin or owner required by the operation."""


class NothingToWithdraw(HandlePayError):
    """Escrow balance for the handle and asset is zero."""


class NothingToClaim(HandlePayError):
    """Accumulated fee or claimable share is zero."""


class TransferFailed(HandlePayError):
    """Underlying asset-move primitive reported failure."""


class ReentrantCall(HandlePayError):
    """A state-mutating entry point was entered while another call on the
    same component instance was still in progress."""
