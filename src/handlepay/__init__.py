"""HandlePay — handle-addressed value transfers with escrow for unclaimed handles.

A sender pays a handle. If the handle resolves to an address, the payment
is delivered net of the dispatcher fee; otherwise the full amount is held
in the escrow ledger until the handle's owner withdraws it. Collected
fees are split between two stakeholders by the fee distributor.
"""

from handlepay.addresses import NATIVE_ASSET, ZERO_ADDRESS, handle_hash
from handlepay.assets.rail import AssetBook
from handlepay.config import ProtocolParams
from handlepay.dispatch.dispatcher import Dispatcher
from handlepay.distribution.distributor import FeeDistributor, StakeShare
from handlepay.escrow.ledger import EscrowLedger
from handlepay.identity.registry import IdentityLookup, InMemoryIdentityRegistry
from handlepay.runtime.atomic import Runtime
from handlepay.service import HandlePayService, ServiceResult

__version__ = "0.1.0"

__all__ = [
    "AssetBook",
    "Dispatcher",
    "EscrowLedger",
    "FeeDistributor",
    "HandlePayService",
    "IdentityLookup",
    "InMemoryIdentityRegistry",
    "NATIVE_ASSET",
    "ProtocolParams",
    "Runtime",
    "ServiceResult",
    "StakeShare",
    "ZERO_ADDRESS",
    "handle_hash",
]
