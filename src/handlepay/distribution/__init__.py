"""Fee distribution — splits collected protocol fees between stakeholders."""

from handlepay.distribution.distributor import FeeDistributor, StakeShare

__all__ = ["FeeDistributor", "StakeShare"]
