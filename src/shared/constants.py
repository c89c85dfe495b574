"""Shared constants across the application."""

import re
from typing import NamedTuple

# Amazon Standard Identification Number: 10 upper-case alphanumerics
ASIN_PATTERN = re.compile(r"^[A-Z0-9]{10}$")

# Product statuses picked up by the refresh worker
REFRESHABLE_STATUSES = ["active", "draft"]

# Worker defaults
REFRESH_BATCH_SIZE = 10
REFRESH_INTERVAL_HOURS = 24
REFRESH_MAX_RETRIES = 3
BACKOFF_BASE_MS = 1000

# Circuit breaker defaults
CIRCUIT_FAILURE_THRESHOLD = 5
CIRCUIT_COOLDOWN_MS = 5 * 60 * 1000

# PA-API
PAAPI_SERVICE_NAME = "ProductAdvertisingAPI"
PAAPI_TARGET_PREFIX = "com.amazon.paapi5.v1.ProductAdvertisingAPIv1"
PAAPI_PARTNER_TYPE = "Associates"
PAAPI_TIMEOUT_SECONDS = 10.0

# Resources requested by the refresh worker and product import
REFRESH_RESOURCES = [
    "Images.Primary.Large",
    "ItemInfo.Title",
    "ItemInfo.ByLineInfo",
    "Offers.Listings.Price",
    "Offers.Listings.SavingBasis",
    "Offers.Listings.Availability.Message",
    "Offers.Listings.Availability.Type",
    "CustomerReviews.Count",
    "CustomerReviews.StarRating",
]

SEARCH_RESOURCES = [
    "Images.Primary.Large",
    "ItemInfo.Title",
    "Offers.Listings.Price",
    "CustomerReviews.StarRating",
]
SEARCH_INDEX = "Electronics"
SEARCH_ITEM_COUNT = 10


class MarketplaceLocale(NamedTuple):
    """PA-API locale for a storefront marketplace."""

    domain: str
    host: str
    region: str


# https://webservices.amazon.com/paapi5/documentation/common-request-parameters.html
MARKETPLACE_LOCALES: dict[str, MarketplaceLocale] = {
    "US": MarketplaceLocale("www.amazon.com", "webservices.amazon.com", "us-east-1"),
    "CA": MarketplaceLocale("www.amazon.ca", "webservices.amazon.ca", "us-east-1"),
    "UK": MarketplaceLocale("www.amazon.co.uk", "webservices.amazon.co.uk", "eu-west-1"),
    "DE": MarketplaceLocale("www.amazon.de", "webservices.amazon.de", "eu-west-1"),
    "FR": MarketplaceLocale("www.amazon.fr", "webservices.amazon.fr", "eu-west-1"),
    "IT": MarketplaceLocale("www.amazon.it", "webservices.amazon.it", "eu-west-1"),
    "ES": MarketplaceLocale("www.amazon.es", "webservices.amazon.es", "eu-west-1"),
    "JP": MarketplaceLocale("www.amazon.co.jp", "webservices.amazon.co.jp", "us-west-2"),
    "AU": MarketplaceLocale("www.amazon.com.au", "webservices.amazon.com.au", "us-west-2"),
}

# Cache / lock keys
REFRESH_LOCK_KEY = "product-refresh:run-lock"
CIRCUIT_STATE_KEY_PREFIX = "product-refresh:circuit:"
