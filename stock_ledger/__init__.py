"""
Stock Ledger - append-only record of product quantity changes.

An append-only stock ledger with:
- Typed adjustment causes with frozen polarity
- Step-size (minimum quantity) validation per product
- Atomic single and batch adjustments
- Per-product serialization of read-modify-write
- Paginated, filterable movement history
- Low/critical stock classification
"""

__version__ = "0.1.0"
