"""
Service layer.

Business logic lives in service classes that take the request's ``Session``.
"""

from .account_service import AccountService
from .budget_service import BudgetService
from .category_service import CategoryService
from .currency import CurrencyService
from .dashboard_service import DashboardService
from .expense_sharing_service import ExpenseSharingService
from .holding_service import HoldingService
from .onboarding_service import OnboardingService
from .privacy_service import PrivacyService
from .recurring_service import RecurringService
from .subscription_service import SubscriptionService
from .transaction_service import TransactionService

__all__ = [
    "AccountService",
    "BudgetService",
    "CategoryService",
    "CurrencyService",
    "DashboardService",
    "ExpenseSharingService",
    "HoldingService",
    "OnboardingService",
    "PrivacyService",
    "RecurringService",
    "SubscriptionService",
    "TransactionService",
]
