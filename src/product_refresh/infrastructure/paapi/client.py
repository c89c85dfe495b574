"""Amazon Product Advertising API 5.0 client.

Requests are signed with AWS SigV4, sent with httpx and executed through the
process-wide PA-API circuit breaker. Upstream failures are mapped onto the
internal :class:`ErrorCode` taxonomy; a breaker rejection propagates as
:class:`CircuitOpenError` unchanged.
"""

from typing import Any

import httpx
import orjson
import structlog

from product_refresh.config import Settings, get_settings
from product_refresh.errors import AppError, ConfigurationError, ErrorCode
from product_refresh.infrastructure.paapi.models import (
    GetItemsResponse,
    ItemAbsent,
    ItemFound,
    ItemLookup,
    PaapiErrorEntry,
    SearchItemsResponse,
)
from product_refresh.infrastructure.paapi.signer import AwsV4Signer, RequestSigner
from product_refresh.services.circuit_breaker import CircuitBreaker, CircuitOpenError
from shared.constants import (
    MARKETPLACE_LOCALES,
    PAAPI_PARTNER_TYPE,
    PAAPI_SERVICE_NAME,
    PAAPI_TARGET_PREFIX,
    PAAPI_TIMEOUT_SECONDS,
    REFRESH_RESOURCES,
    SEARCH_INDEX,
    SEARCH_ITEM_COUNT,
    SEARCH_RESOURCES,
    MarketplaceLocale,
)

logger = structlog.get_logger()

# Upstream error code -> internal code. Anything not listed is PAAPI_ERROR.
UPSTREAM_ERROR_CODES: dict[str, ErrorCode] = {
    "ItemNotAccessible": ErrorCode.PAAPI_ITEM_NOT_ACCESSIBLE,
    "InvalidParameterValue": ErrorCode.PAAPI_INVALID_PARAMETER,
    "TooManyRequests": ErrorCode.PAAPI_THROTTLED,
    "RequestThrottled": ErrorCode.PAAPI_THROTTLED,
    "InvalidAccessKeyId": ErrorCode.INVALID_API_KEY,
    "SignatureDoesNotMatch": ErrorCode.INVALID_API_KEY,
    "InvalidSignature": ErrorCode.INVALID_API_KEY,
    "AccessDenied": ErrorCode.INVALID_API_KEY,
}

_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.PAAPI_ITEM_NOT_ACCESSIBLE: (
        "The requested item is not accessible or does not exist in this marketplace"
    ),
    ErrorCode.PAAPI_INVALID_PARAMETER: "Invalid parameter value provided to PA-API",
    ErrorCode.PAAPI_THROTTLED: "PA-API request rate limit exceeded",
    ErrorCode.INVALID_API_KEY: "PA-API authentication failed, check access credentials",
}

# SearchItems reports an empty result set as an error
NO_RESULTS_CODE = "NoResults"


class PaapiClientError(AppError):
    """An upstream call failed; ``code`` is the mapped internal code."""

    code = ErrorCode.PAAPI_ERROR


def map_upstream_error(entry: PaapiErrorEntry, http_status: int) -> PaapiClientError:
    code = UPSTREAM_ERROR_CODES.get(entry.code, ErrorCode.PAAPI_ERROR)
    message = _MESSAGES.get(code) or entry.message or "PA-API request failed"
    return PaapiClientError(
        message,
        code=code,
        details={
            "original_code": entry.code,
            "original_message": entry.message,
            "http_status": http_status,
        },
    )


# Shared breaker for every PA-API client in the process
_paapi_circuit_breaker: CircuitBreaker | None = None


def get_paapi_circuit_breaker() -> CircuitBreaker:
    global _paapi_circuit_breaker
    if _paapi_circuit_breaker is None:
        settings = get_settings()
        _paapi_circuit_breaker = CircuitBreaker(
            name="paapi-client",
            failure_threshold=settings.circuit_failure_threshold,
            cooldown_ms=settings.circuit_cooldown_ms,
        )
    return _paapi_circuit_breaker


def resolve_locale(marketplace: str) -> MarketplaceLocale:
    try:
        return MARKETPLACE_LOCALES[marketplace.upper()]
    except KeyError:
        raise AppError(
            f"Unsupported marketplace '{marketplace}'",
            code=ErrorCode.INVALID_MARKETPLACE,
            details={"marketplace": marketplace, "supported": sorted(MARKETPLACE_LOCALES)},
        ) from None


class PaapiClient:
    """Client for the GetItems and SearchItems operations of one marketplace."""

    def __init__(
        self,
        access_key: str,
        secret_key: str,
        partner_tag: str,
        marketplace: str = "US",
        breaker: CircuitBreaker | None = None,
        timeout_seconds: float = PAAPI_TIMEOUT_SECONDS,
        http_client: httpx.AsyncClient | None = None,
        signer: RequestSigner | None = None,
    ):
        missing = [
            name
            for name, value in (
                ("access_key", access_key),
                ("secret_key", secret_key),
                ("partner_tag", partner_tag),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                "PA-API configuration error",
                details={"missing": missing},
            )

        self.marketplace = marketplace.upper()
        self.locale = resolve_locale(self.marketplace)
        self.partner_tag = partner_tag
        self.timeout_seconds = timeout_seconds
        self.breaker = breaker or get_paapi_circuit_breaker()
        self.signer = signer or AwsV4Signer(
            access_key, secret_key, self.locale.region, PAAPI_SERVICE_NAME
        )
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http.aclose()

    async def __aenter__(self) -> "PaapiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def get_items(
        self, item_ids: list[str], resources: list[str] | None = None
    ) -> dict[str, ItemLookup]:
        """Fetch items by ASIN.

        Returns a mapping with one entry per requested ASIN, in request order:
        :class:`ItemFound` when the upstream returned the item, otherwise
        :class:`ItemAbsent`.
        """
        if not item_ids:
            raise AppError("item_ids must not be empty", code=ErrorCode.VALIDATION_ERROR)

        payload = {
            "ItemIds": item_ids,
            "Resources": resources or REFRESH_RESOURCES,
            "PartnerTag": self.partner_tag,
            "PartnerType": PAAPI_PARTNER_TYPE,
            "Marketplace": self.locale.domain,
        }
        data = await self._call("GetItems", payload, item_count=len(item_ids))
        parsed = GetItemsResponse.model_validate(data)
        raw_items = (data.get("ItemsResult") or {}).get("Items") or []
        items = parsed.items_result.items if parsed.items_result else []

        if parsed.errors and not items:
            raise map_upstream_error(parsed.errors[0], 200)
        if parsed.errors:
            logger.warning(
                "PA-API returned partial errors",
                errors=[e.code for e in parsed.errors],
                item_count=len(items),
            )

        found = {
            item.asin: ItemFound.from_item(item, raw)
            for item, raw in zip(items, raw_items)
        }
        return {asin: found.get(asin) or ItemAbsent(asin) for asin in item_ids}

    async def lookup(self, asin: str, resources: list[str] | None = None) -> ItemLookup:
        """Fetch a single ASIN."""
        results = await self.get_items([asin], resources)
        return results[asin]

    async def search_items(
        self,
        keywords: str,
        search_index: str = SEARCH_INDEX,
        item_count: int = SEARCH_ITEM_COUNT,
        resources: list[str] | None = None,
    ) -> list[ItemFound]:
        payload = {
            "Keywords": keywords,
            "SearchIndex": search_index,
            "ItemCount": item_count,
            "ItemPage": 1,
            "Resources": resources or SEARCH_RESOURCES,
            "PartnerTag": self.partner_tag,
            "PartnerType": PAAPI_PARTNER_TYPE,
            "Marketplace": self.locale.domain,
        }
        data = await self._call("SearchItems", payload, keywords=keywords)
        parsed = SearchItemsResponse.model_validate(data)
        items = parsed.search_result.items if parsed.search_result else []

        if parsed.errors and not items:
            if parsed.errors[0].code == NO_RESULTS_CODE:
                return []
            raise map_upstream_error(parsed.errors[0], 200)

        raw_items = (data.get("SearchResult") or {}).get("Items") or []
        return [ItemFound.from_item(item, raw) for item, raw in zip(items, raw_items)]

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def endpoint(self, operation: str) -> str:
        return f"https://{self.locale.host}/paapi5/{operation.lower()}"

    async def _call(self, operation: str, payload: dict[str, Any], **log_fields: Any) -> dict[str, Any]:
        logger.info(
            "PA-API request starting",
            operation=operation,
            marketplace=self.marketplace,
            circuit_state=self.breaker.state.value,
            **log_fields,
        )
        try:
            data = await self.breaker.execute(lambda: self._send(operation, payload))
        except CircuitOpenError as e:
            logger.warning(
                "PA-API request blocked by circuit breaker",
                operation=operation,
                retry_after_ms=e.retry_after_ms,
                circuit_state=self.breaker.state.value,
                **log_fields,
            )
            raise
        except PaapiClientError as e:
            logger.error(
                "PA-API request failed",
                operation=operation,
                error_code=e.code_value,
                error=e.message,
                circuit_state=self.breaker.state.value,
                **log_fields,
            )
            raise

        logger.info(
            "PA-API request succeeded",
            operation=operation,
            circuit_state=self.breaker.state.value,
            **log_fields,
        )
        return data

    async def _send(self, operation: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = self.endpoint(operation)
        body = orjson.dumps(payload)
        headers = self.signer.sign(
            "POST",
            url,
            {
                "content-encoding": "amz-1.0",
                "content-type": "application/json; charset=utf-8",
                "host": self.locale.host,
                "x-amz-target": f"{PAAPI_TARGET_PREFIX}.{operation}",
            },
            body,
        )

        try:
            response = await self._http.post(
                url, content=body, headers=headers, timeout=self.timeout_seconds
            )
        except httpx.TimeoutException as e:
            raise PaapiClientError(
                f"Request timeout after {self.timeout_seconds}s",
                code=ErrorCode.PAAPI_TIMEOUT,
                details={"operation": operation},
            ) from e
        except httpx.HTTPError as e:
            raise PaapiClientError(
                f"Network error: {e}",
                code=ErrorCode.PAAPI_ERROR,
                details={"reason": ErrorCode.NETWORK_ERROR.value, "operation": operation},
            ) from e

        try:
            data = orjson.loads(response.content) if response.content else {}
        except orjson.JSONDecodeError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if response.is_error:
            errors = data.get("Errors") or []
            if errors:
                raise map_upstream_error(
                    PaapiErrorEntry.model_validate(errors[0]), response.status_code
                )
            raise PaapiClientError(
                f"PA-API request failed with status {response.status_code}",
                code=ErrorCode.PAAPI_ERROR,
                details={"http_status": response.status_code},
            )

        return data


def create_paapi_client(
    settings: Settings | None = None,
    marketplace: str | None = None,
    http_client: httpx.AsyncClient | None = None,
    breaker: CircuitBreaker | None = None,
) -> PaapiClient:
    """Build a client from settings, sharing the process-wide breaker."""
    settings = settings or get_settings()
    return PaapiClient(
        access_key=settings.paapi_access_key,
        secret_key=settings.paapi_secret_key,
        partner_tag=settings.paapi_partner_tag,
        marketplace=marketplace or settings.paapi_default_marketplace,
        breaker=breaker,
        timeout_seconds=settings.paapi_timeout_seconds,
        http_client=http_client,
    )

