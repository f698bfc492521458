"""
Billing enumerations.
"""

import enum


class SettlementStatus(str, enum.Enum):
    """Per-load settlement status enumeration."""
    PENDING = "PENDING"  # Not yet settled
    PAID = "PAID"  # Escrow released to the carrier
    REFUNDED = "REFUNDED"  # Escrow returned to the shipper
    DISPUTED = "DISPUTED"  # Held for manual review


class ServiceFeeStatus(str, enum.Enum):
    """Platform service fee status enumeration."""
    PENDING = "PENDING"  # Not reserved yet
    RESERVED = "RESERVED"  # Held from the shipper wallet
    DEDUCTED = "DEDUCTED"  # Moved to platform revenue at settlement
    REFUNDED = "REFUNDED"  # Returned to the shipper
    WAIVED = "WAIVED"  # No corridor, nothing to charge


class AccountType(str, enum.Enum):
    """Financial account type enumeration."""
    SHIPPER_WALLET = "SHIPPER_WALLET"
    CARRIER_WALLET = "CARRIER_WALLET"
    ESCROW = "ESCROW"
    SERVICE_FEE_RESERVE = "SERVICE_FEE_RESERVE"
    PLATFORM_REVENUE = "PLATFORM_REVENUE"


class JournalEntryType(str, enum.Enum):
    """Journal entry type enumeration."""
    ESCROW_FUND = "ESCROW_FUND"
    ESCROW_RELEASE = "ESCROW_RELEASE"
    ESCROW_REFUND = "ESCROW_REFUND"
    SERVICE_FEE_RESERVE = "SERVICE_FEE_RESERVE"
    SERVICE_FEE_REFUND = "SERVICE_FEE_REFUND"
    SERVICE_FEE_DEDUCT = "SERVICE_FEE_DEDUCT"


class LedgerEntryType(str, enum.Enum):
    """Ledger entry type enumeration."""
    DEBIT = "DEBIT"  # Money leaving the account
    CREDIT = "CREDIT"  # Money entering the account
