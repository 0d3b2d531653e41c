"""Lead intelligence core: provider waterfall, credit ledger, scoring and pipeline stages."""

__version__ = "0.1.0"
