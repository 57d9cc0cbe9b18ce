"""Incremental referral analytics over customer, referral-code and transaction exports."""

__version__ = "0.1.0"

__all__ = [
    'analytics',
    'core',
    'parsers',
    'persist',
    'pipeline',
    'export',
]
