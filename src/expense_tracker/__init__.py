"""
Expense Tracker client.

Session handling, a REST client for the expense backend, the receipt-to-expense
draft workflow and a command-line front end over them.
"""

__all__ = [
    "api",
    "config",
    "domain",
    "errors",
    "logging",
    "paths",
    "session",
    "workflow",
]
