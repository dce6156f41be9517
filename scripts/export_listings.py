#!/usr/bin/env python
"""Export all eBay seller listings to an Excel workbook."""
import os
import sys

from listings_exporter.config.logging_config import setup_logging
from listings_exporter.exporter import run_export


def main() -> int:
    setup_logging(os.getenv("LOG_LEVEL", "INFO"))
    try:
        run_export()
    except Exception as e:
        print(f"\nFatal error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
