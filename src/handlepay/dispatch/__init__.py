"""Dispatcher — routes handle-addressed transfers to payment or escrow."""

from handlepay.dispatch.dispatcher import MAX_DISPATCHER_FEE_BPS, Dispatcher

__all__ = ["Dispatcher", "MAX_DISPATCHER_FEE_BPS"]
