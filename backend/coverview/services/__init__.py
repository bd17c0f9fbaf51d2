"""Services for the credit ledger, billing and AI provider integrations."""

from coverview.services.billing import BilledResult, BillingService, get_billing_service
from coverview.services.ledger import (
    CreditResult,
    DebitResult,
    LedgerAudit,
    LedgerService,
    get_ledger_service,
)
from coverview.services.usage import UsageService, UsageSummary, get_usage_service

__all__ = [
    "BilledResult",
    "BillingService",
    "get_billing_service",
    "CreditResult",
    "DebitResult",
    "LedgerAudit",
    "LedgerService",
    "get_ledger_service",
    "UsageService",
    "UsageSummary",
    "get_usage_service",
]
