"""Services for the voucher kernel (write side)."""

from voucher_kernel.services.posting_validator import PostingValidator
from voucher_kernel.services.sequence_allocator import Allocation, SequenceAllocator
from voucher_kernel.services.series_registry import SeriesRegistry

__all__ = [
    "Allocation",
    "PostingValidator",
    "SequenceAllocator",
    "SeriesRegistry",
]
