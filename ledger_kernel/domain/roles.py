"""
Account roles and the default chart of accounts.

Posting code never hard-codes account ids.  It asks for a logical ROLE
(cash, receivables, revenue, ...) which the Account Directory resolves to a
concrete account of the business through the configured code table.
"""

from enum import Enum


class AccountRole(str, Enum):
    """Logical account roles used by the settlement postings."""

    CASH = "cash"
    ACCOUNTS_RECEIVABLE = "accounts_receivable"
    INVENTORY = "inventory"
    ACCOUNTS_PAYABLE = "accounts_payable"
    TAX_PAYABLE = "tax_payable"
    SALES_REVENUE = "sales_revenue"
    COST_OF_GOODS_SOLD = "cost_of_goods_sold"
    GENERAL_EXPENSE = "general_expense"


DEFAULT_ACCOUNT_CODES: dict[AccountRole, str] = {
    AccountRole.CASH: "1000",
    AccountRole.ACCOUNTS_RECEIVABLE: "1100",
    AccountRole.INVENTORY: "1200",
    AccountRole.ACCOUNTS_PAYABLE: "2000",
    AccountRole.TAX_PAYABLE: "2100",
    AccountRole.SALES_REVENUE: "4000",
    AccountRole.COST_OF_GOODS_SOLD: "5000",
    AccountRole.GENERAL_EXPENSE: "6000",
}

# (code, name, account_type, parent_code)
DEFAULT_CHART: tuple[tuple[str, str, str, str | None], ...] = (
    ("1", "Assets", "asset", None),
    ("1000", "Cash", "cash", "1"),
    ("1100", "Accounts Receivable", "accounts_receivable", "1"),
    ("1200", "Inventory", "asset", "1"),
    ("2", "Liabilities", "liability", None),
    ("2000", "Accounts Payable", "accounts_payable", "2"),
    ("2100", "Tax Payable", "liability", "2"),
    ("3", "Equity", "equity", None),
    ("4", "Income", "income", None),
    ("4000", "Sales Revenue", "income", "4"),
    ("5", "Cost of Sales", "expense", None),
    ("5000", "Cost of Goods Sold", "expense", "5"),
    ("6", "Operating Expenses", "expense", None),
    ("6000", "General Expense", "expense", "6"),
)
