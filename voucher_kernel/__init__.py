"""
Voucher Kernel

Numbering and posting core for multi-tenant invoicing:
- Gapless per-series document numbers under concurrent access
- Periodic sequence resets (monthly, yearly, fiscal year)
- Compliance-checked number rendering
- Balanced-entry validation before a document becomes immutable
"""

__version__ = "0.1.0"
