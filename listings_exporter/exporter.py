"""
Listings export run: fetch -> flatten -> write
"""
import logging
import threading
from typing import Any, Dict, Optional

from listings_exporter.config.ebay_config import ExportSettings, load_settings
from listings_exporter.models.ebay_export import RunMetrics
from listings_exporter.services.excel_export import ExcelExporter
from listings_exporter.services.listings_fetcher import ListingsFetcher
from listings_exporter.services.rate_limiter import RateLimiter
from listings_exporter.services.record_flattener import flatten_all
from listings_exporter.services.trading_client import TradingApiClient

logger = logging.getLogger(__name__)

BANNER = "=" * 80


def run_export(
    settings: Optional[ExportSettings] = None,
    client: Optional[TradingApiClient] = None,
    exporter: Optional[ExcelExporter] = None,
    metrics: Optional[RunMetrics] = None,
    cancel_event: Optional[threading.Event] = None,
    include_history: bool = True,
) -> Dict[str, Any]:
    """
    Export all seller listings to an Excel workbook.

    An empty result is a success with record_count 0 and no file written.
    Any other failure is logged and re-raised.

    Returns:
        Dict with success, filename, record_count, file_size and run stats
    """
    metrics = metrics or getattr(client, "metrics", None) or RunMetrics()

    try:
        logger.info(BANNER)
        logger.info("eBay Trading API - Active Listings Exporter")
        logger.info(BANNER)

        settings = settings or load_settings()
        logger.info("Environment validation passed")
        logger.info(f"Environment: {settings.environment}")
        logger.info(f"Output file: {settings.output_file}")

        if client is None:
            client = TradingApiClient(
                settings,
                rate_limiter=RateLimiter(max_requests=settings.requests_per_second),
                metrics=metrics,
            )
        fetcher = ListingsFetcher(client, inter_page_delay=settings.inter_page_delay, cancel_event=cancel_event)

        if include_history:
            listings = fetcher.fetch_seller_listings()
        else:
            listings = fetcher.fetch_all()

        if not listings:
            logger.warning("No listings found")
            return {
                "success": True,
                "filename": None,
                "record_count": 0,
                "file_size": 0,
                "stats": metrics.as_dict(),
                "message": "No listings found",
            }

        rows = flatten_all(listings)
        result = (exporter or ExcelExporter()).write(rows, settings.output_file)

        stats = metrics.as_dict()
        logger.info(BANNER)
        logger.info("ACTIVE LISTINGS EXPORT COMPLETED SUCCESSFULLY")
        logger.info(BANNER)
        logger.info(f"Duration: {stats['duration']} seconds")
        logger.info(f"Total API requests: {stats['api_requests']}")
        logger.info(f"Active listings exported: {result.record_count}")
        logger.info(f"Output file: {result.filename}")
        logger.info(BANNER)

        return {
            "success": True,
            **result.model_dump(),
            "stats": stats,
            "message": f"Exported {result.record_count} listings to {result.filename}",
        }

    except Exception as e:
        stats = metrics.as_dict()
        logger.error(BANNER)
        logger.error("EXPORT FAILED")
        logger.error(BANNER)
        logger.error(f"Error: {e}")
        logger.error(f"Duration: {stats['duration']} seconds")
        logger.error(f"API requests made: {stats['api_requests']}")
        logger.error(BANNER)
        raise
