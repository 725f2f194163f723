"""Receipt attachment storage package."""

from ledgervault.services.receipts.file_store import ReceiptFileStore, format_file_size

__all__ = [
    "ReceiptFileStore",
    "format_file_size",
]
