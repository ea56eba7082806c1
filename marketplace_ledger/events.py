"""
Business events understood by the auto-voucher engine.
"""

from enum import Enum


class AutoVoucherEvent(Enum):
    """Marketplace events that produce accounting entries automatically"""

    # Order events
    ORDER_CONFIRMED = "ORDER_CONFIRMED"
    ORDER_DELIVERED = "ORDER_DELIVERED"
    REFUND_INITIATED = "REFUND_INITIATED"

    # Gateway events
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    SETTLEMENT_RECEIVED = "SETTLEMENT_RECEIVED"

    # Vendor events
    VENDOR_PAYOUT = "VENDOR_PAYOUT"
