"""
voucher_services -- orchestration layer.

Composes kernel services and pure engines per tenant request and owns
every transaction boundary.  Host applications use ``VoucherEngine``.
"""

from voucher_services.document_service import DocumentService
from voucher_services.voucher_engine import VoucherEngine

__all__ = ["DocumentService", "VoucherEngine"]
