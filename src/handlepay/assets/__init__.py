"""Asset-transfer capability — native coin and fungible token movements."""

from handlepay.assets.rail import AssetBook, AssetRail, ReceiveHook, check_attached_value, collect, deliver

__all__ = ["AssetBook", "AssetRail", "ReceiveHook", "check_attached_value", "collect", "deliver"]
