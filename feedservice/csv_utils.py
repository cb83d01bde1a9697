"""CSV import of raw feed records and flat export of products."""

import csv
import io
import os
from itertools import islice
from typing import Dict, Iterable, List, Optional, TextIO, Union

from feedservice.config import DISCOUNT_BIN_SIZE
from feedservice.errors import ValidationError
from feedservice.logging_config import get_logger
from feedservice.models import EXPORT_HEADER, Product

__all__ = [
    "read_records",
    "load_records",
    "product_rows",
    "export_products_to_csv",
]

logger = get_logger("csv")


def read_records(source: Union[str, TextIO], limit: Optional[int] = None) -> List[Dict[str, str]]:
    """Parse CSV text (or an open text file) into raw records.

    The delimiter is sniffed from the header line, since affiliate feeds
    mix commas, semicolons, tabs and pipes.

    Args:
        source: CSV content or a file object
        limit: Maximum number of rows to read (None for all)
    """
    f = io.StringIO(source) if isinstance(source, str) else source
    header = f.readline()
    if not header.strip():
        return []
    try:
        dialect = csv.Sniffer().sniff(header, delimiters=",;\t|")
        delimiter = dialect.delimiter
    except csv.Error:
        delimiter = ","

    fieldnames = [h.strip().lower() for h in next(csv.reader([header], delimiter=delimiter))]
    reader = csv.DictReader(f, fieldnames=fieldnames, delimiter=delimiter)
    rows = reader if limit is None else islice(reader, limit)
    return [{k: (v or "") for k, v in row.items() if k is not None} for row in rows]


def load_records(path: str, limit: Optional[int] = None) -> List[Dict[str, str]]:
    """Load raw records from a CSV file on disk."""
    with open(path, "r", newline="", encoding="utf-8-sig") as f:
        return read_records(f, limit)


def product_rows(products: Iterable[Product], bin_size: int = DISCOUNT_BIN_SIZE) -> List[List[str]]:
    """Flatten products into export rows, one per in-stock offer.

    Products that do not qualify for export are skipped with a warning.
    """
    rows: List[List[str]] = []
    for product in products:
        try:
            rows.extend(product.as_rows(bin_size))
        except ValidationError as e:
            logger.warning(f"Skipping {product.name} in export - {e}")
    return rows


def export_products_to_csv(
    products: Iterable[Product],
    csv_path: str,
    bin_size: int = DISCOUNT_BIN_SIZE,
) -> int:
    """Write the flat tabular export.

    Returns:
        Number of rows written
    """
    rows = product_rows(products, bin_size)
    if not rows:
        logger.warning("No rows to export.")
        return 0

    os.makedirs(os.path.dirname(csv_path) or ".", exist_ok=True)
    with open(csv_path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(EXPORT_HEADER)
        writer.writerows(rows)

    logger.info(f"Exported {len(rows)} rows to {csv_path}")
    return len(rows)
