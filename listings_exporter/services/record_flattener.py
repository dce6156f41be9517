"""
Flatten Trading API item records into fixed-schema spreadsheet rows.

Every row has exactly the columns of LISTING_COLUMNS, in that order.
Extraction is best effort: a missing or oddly shaped sub-structure gives an
empty string (or the column's default), never an exception.
"""
import html
import logging
import re
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Tuple, Union

from listings_exporter.models.ebay_export import FlatRow, Node, RawRecord
from listings_exporter.services.response_decoder import as_list, get_path

logger = logging.getLogger(__name__)

Extractor = Callable[[RawRecord], str]

DESCRIPTION_MAX_LENGTH = 500
TIME_LEFT_PATTERN = re.compile(r"P(?:(\d+)D)?T?(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?")
TAG_PATTERN = re.compile(r"<[^>]*>")


def _text(node: Node) -> str:
    return node if isinstance(node, str) else ""


def resolve_path(record: Node, path: str) -> str:
    """Scalar at a dotted path, or "" when missing or not a scalar"""
    return _text(get_path(record, path))


def path(*paths: str, default: str = "") -> Extractor:
    """Extractor for the first non-empty of one or more dotted paths"""
    def extract(record: RawRecord) -> str:
        for p in paths:
            value = resolve_path(record, p)
            if value:
                return value
        return default
    return extract


def _join_strings(values: List[Node]) -> str:
    return ", ".join(v for v in values if isinstance(v, str))


def extract_payment_methods(node: Node) -> str:
    if isinstance(node, str):
        return node
    if isinstance(node, list):
        return _join_strings(node)
    if isinstance(node, dict) and "Payment" in node:
        payment = node["Payment"]
        if isinstance(payment, str):
            return payment
        if isinstance(payment, list):
            return _join_strings(payment)
    return ""


def extract_item_specific(item_specifics: Node, name: str) -> str:
    """Value of a NameValueList entry, matched case-insensitively by Name"""
    if not isinstance(item_specifics, dict):
        return ""
    wanted = name.lower()
    for entry in as_list(item_specifics.get("NameValueList")):
        if not isinstance(entry, dict):
            continue
        entry_name = entry.get("Name")
        if isinstance(entry_name, str) and entry_name.lower() == wanted:
            value = entry.get("Value")
            return _join_strings(value) if isinstance(value, list) else _text(value)
    return ""


def clean_description(description: Node) -> str:
    text = _text(description)
    if not text:
        return ""
    return html.unescape(TAG_PATTERN.sub("", text)).strip()[:DESCRIPTION_MAX_LENGTH]


def calculate_days_left(time_left: Node) -> str:
    """ISO-8601 duration (P5DT12H30M45S) to fractional days, e.g. "5.5" """
    text = _text(time_left)
    if not text:
        return ""
    match = TIME_LEFT_PATTERN.match(text)
    if not match:
        return text
    days = int(match.group(1) or 0)
    hours = int(match.group(2) or 0)
    return f"{days + round(hours / 24 * 10) / 10:g}"


def _parse_amount(value: str) -> float:
    try:
        return float(value)
    except ValueError:
        return 0.0


def calculate_total_fees(record: RawRecord) -> str:
    total = _parse_amount(resolve_path(record, "ListingDetails.ListingFee._")) + _parse_amount(
        resolve_path(record, "SellingStatus.FinalValueFee._")
    )
    return f"{total:.2f}" if total > 0 else ""


def format_date(value: Node) -> str:
    """ISO timestamp to YYYY-MM-DD (UTC); unparsable values pass through"""
    text = _text(value)
    if not text:
        return ""
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return text
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.date().isoformat()


def has_enhancement(flag: str) -> Extractor:
    def extract(record: RawRecord) -> str:
        enhancements = as_list(get_path(record, "ListingEnhancement"))
        return "true" if flag in enhancements else "false"
    return extract


def picture_count(record: RawRecord) -> str:
    return str(len([url for url in as_list(get_path(record, "PictureDetails.PictureURL")) if url]))


def item_specific(name: str) -> Extractor:
    return lambda record: extract_item_specific(get_path(record, "ItemSpecifics"), name)


LISTING_COLUMNS: List[Tuple[str, Extractor]] = [
    # Basic Item Info
    ("Item ID", path("ItemID")),
    ("SKU", path("SKU")),
    ("Title", path("Title")),
    ("Subtitle", path("SubTitle")),
    ("Description", lambda r: clean_description(get_path(r, "Description"))),
    # Category & Classification
    ("Category ID", path("PrimaryCategory.CategoryID")),
    ("Category Name", path("PrimaryCategory.CategoryName")),
    ("Secondary Category ID", path("SecondaryCategory.CategoryID")),
    ("Secondary Category Name", path("SecondaryCategory.CategoryName")),
    # Condition
    ("Condition ID", path("ConditionID")),
    ("Condition Name", path("ConditionDisplayName")),
    ("Condition Description", path("ConditionDescription")),
    # Listing Format & Duration
    ("Listing Type", path("ListingType")),
    ("Listing Duration", path("ListingDuration")),
    ("Listing Format", path("ListingDetails.ListingType", "ListingType")),
    # Pricing
    ("Start Price", path("StartPrice._")),
    ("Current Price", path("SellingStatus.CurrentPrice._")),
    ("Buy It Now Price", path("BuyItNowPrice._")),
    ("Reserve Price", path("ReservePrice._")),
    ("Currency", path("SellingStatus.CurrentPrice.currencyID", "StartPrice.currencyID")),
    # Quantity & Sales
    ("Quantity", path("Quantity")),
    ("Quantity Sold", path("SellingStatus.QuantitySold")),
    ("Quantity Available", path("QuantityAvailable", "SellingStatus.QuantityAvailable")),
    ("Min Qty Per Buyer", path("QuantityInfo.MinimumRemnantSet")),
    # Bidding & Offers
    ("Bid Count", path("SellingStatus.BidCount")),
    ("High Bidder", path("SellingStatus.HighBidder.UserID")),
    ("Best Offer Enabled", path("BestOfferDetails.BestOfferEnabled", default="false")),
    ("Auto Accept Price", path("ListingDetails.BestOfferAutoAcceptPrice._", "BestOfferDetails.BestOfferAutoAcceptPrice._")),
    ("Min Accept Price", path("ListingDetails.MinimumBestOfferPrice._", "BestOfferDetails.BestOfferAutoDeclinePrice._")),
    # Status & Timing
    ("Listing Status", path("SellingStatus.ListingStatus")),
    ("Time Left", path("TimeLeft", "SellingStatus.TimeLeft")),
    ("Start Time", path("ListingDetails.StartTime")),
    ("End Time", path("ListingDetails.EndTime")),
    ("Time Left (Days)", lambda r: calculate_days_left(get_path(r, "TimeLeft") or get_path(r, "SellingStatus.TimeLeft"))),
    # Location & Shipping
    ("Site", path("Site")),
    ("Country", path("Country")),
    ("Location", path("Location")),
    ("Postal Code", path("PostalCode")),
    ("Shipping Type", path("ShippingDetails.ShippingType")),
    ("Shipping Cost", path("ShippingDetails.ShippingServiceOptions.0.ShippingServiceCost._")),
    ("Free Shipping", path("ShippingDetails.ShippingServiceOptions.0.FreeShipping", default="false")),
    ("Fast Handling", path("ShippingDetails.FastAndFree", default="false")),
    # Payment & Returns
    ("Payment Methods", lambda r: extract_payment_methods(get_path(r, "PaymentMethods"))),
    ("PayPal Email", path("PayPalEmailAddress")),
    ("Returns Accepted", path("ReturnPolicy.ReturnsAcceptedOption")),
    ("Return Period", path("ReturnPolicy.ReturnsWithinOption")),
    ("Return Policy Description", path("ReturnPolicy.Description")),
    # Images & Media
    ("Gallery URL", path("PictureDetails.GalleryURL", "GalleryURL")),
    ("Gallery Type", path("PictureDetails.GalleryType", "GalleryType")),
    ("Picture Count", picture_count),
    ("Has Pictures", lambda r: "true" if r.get("PictureDetails") else "false"),
    # URLs & Links
    ("View Item URL", path("ListingDetails.ViewItemURL")),
    ("View Item URL For Natural Search", path("ListingDetails.ViewItemURLForNaturalSearch")),
    # Performance Metrics
    ("Watch Count", path("WatchCount")),
    ("Hit Count", path("HitCount")),
    ("Question Count", path("QuestionCount")),
    # Listing Features
    ("Private Listing", path("PrivateListing", default="false")),
    ("Bold Title", has_enhancement("BoldTitle")),
    ("Featured", has_enhancement("Featured")),
    ("Highlight", has_enhancement("Highlight")),
    ("Gallery Plus", has_enhancement("GalleryPlus")),
    # Business Policies
    ("Payment Policy ID", path("SellerProfiles.SellerPaymentProfile.PaymentProfileID")),
    ("Shipping Policy ID", path("SellerProfiles.SellerShippingProfile.ShippingProfileID")),
    ("Return Policy ID", path("SellerProfiles.SellerReturnProfile.ReturnProfileID")),
    # Item Specifics
    ("Brand", item_specific("Brand")),
    ("Model", item_specific("Model")),
    ("Size", item_specific("Size")),
    ("Color", item_specific("Color")),
    ("Material", item_specific("Material")),
    # Seller Info
    ("Seller ID", path("Seller.UserID")),
    ("Feedback Score", path("Seller.FeedbackScore")),
    ("Positive Feedback %", path("Seller.PositiveFeedbackPercent")),
    # Fees & Costs
    ("Listing Fee", path("ListingDetails.ListingFee._")),
    ("Final Value Fee", path("SellingStatus.FinalValueFee._")),
    ("Total Fees", calculate_total_fees),
    # Technical Details
    ("Revision", path("ReviseStatus.ItemRevised", default="false")),
    ("UUID", path("UUID")),
    ("Application Data", path("ApplicationData")),
    # Timestamps (formatted for Excel)
    ("Created Date", lambda r: format_date(get_path(r, "ListingDetails.StartTime"))),
    ("End Date", lambda r: format_date(get_path(r, "ListingDetails.EndTime"))),
]

COLUMN_NAMES: List[str] = [name for name, _ in LISTING_COLUMNS]


def flatten(record: Union[RawRecord, Node]) -> FlatRow:
    """Flatten one item record; never raises"""
    source = record if isinstance(record, dict) else {}
    row: Dict[str, str] = {}
    for name, extract in LISTING_COLUMNS:
        try:
            row[name] = extract(source)
        except (TypeError, ValueError, AttributeError, IndexError) as e:
            logger.warning(f"Could not extract '{name}': {e}")
            row[name] = ""
    return row


def flatten_all(records: Iterable[Node]) -> Tuple[FlatRow, ...]:
    logger.info("Processing listings...")
    rows = tuple(flatten(record) for record in records)
    logger.info(f"Processed {len(rows)} listings")
    return rows
