"""PA-API 5.0 response models and the normalized item lookup result."""

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class PaapiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# =============================================================================
# Wire models (only the fields this service reads)
# =============================================================================


class DisplayValue(PaapiModel):
    display_value: str | None = Field(default=None, alias="DisplayValue")


class ByLineInfo(PaapiModel):
    brand: DisplayValue | None = Field(default=None, alias="Brand")
    manufacturer: DisplayValue | None = Field(default=None, alias="Manufacturer")


class ItemInfo(PaapiModel):
    title: DisplayValue | None = Field(default=None, alias="Title")
    by_line_info: ByLineInfo | None = Field(default=None, alias="ByLineInfo")


class ImageSize(PaapiModel):
    url: str | None = Field(default=None, alias="URL")
    height: int | None = Field(default=None, alias="Height")
    width: int | None = Field(default=None, alias="Width")


class ImageVariants(PaapiModel):
    small: ImageSize | None = Field(default=None, alias="Small")
    medium: ImageSize | None = Field(default=None, alias="Medium")
    large: ImageSize | None = Field(default=None, alias="Large")


class Images(PaapiModel):
    primary: ImageVariants | None = Field(default=None, alias="Primary")


class Money(PaapiModel):
    amount: float | None = Field(default=None, alias="Amount")
    currency: str | None = Field(default=None, alias="Currency")
    display_amount: str | None = Field(default=None, alias="DisplayAmount")


class Availability(PaapiModel):
    type: str | None = Field(default=None, alias="Type")
    message: str | None = Field(default=None, alias="Message")


class Listing(PaapiModel):
    price: Money | None = Field(default=None, alias="Price")
    saving_basis: Money | None = Field(default=None, alias="SavingBasis")
    availability: Availability | None = Field(default=None, alias="Availability")


class Offers(PaapiModel):
    listings: list[Listing] = Field(default_factory=list, alias="Listings")


class StarRating(PaapiModel):
    value: float | None = Field(default=None, alias="Value")


class CustomerReviews(PaapiModel):
    count: int | None = Field(default=None, alias="Count")
    star_rating: StarRating | None = Field(default=None, alias="StarRating")


class PaapiItem(PaapiModel):
    asin: str = Field(alias="ASIN")
    detail_page_url: str | None = Field(default=None, alias="DetailPageURL")
    item_info: ItemInfo | None = Field(default=None, alias="ItemInfo")
    images: Images | None = Field(default=None, alias="Images")
    offers: Offers | None = Field(default=None, alias="Offers")
    customer_reviews: CustomerReviews | None = Field(default=None, alias="CustomerReviews")


class PaapiErrorEntry(PaapiModel):
    code: str = Field(default="", alias="Code")
    message: str = Field(default="", alias="Message")


class ItemsResult(PaapiModel):
    items: list[PaapiItem] = Field(default_factory=list, alias="Items")


class GetItemsResponse(PaapiModel):
    items_result: ItemsResult | None = Field(default=None, alias="ItemsResult")
    errors: list[PaapiErrorEntry] = Field(default_factory=list, alias="Errors")


class SearchResult(PaapiModel):
    items: list[PaapiItem] = Field(default_factory=list, alias="Items")
    total_result_count: int | None = Field(default=None, alias="TotalResultCount")


class SearchItemsResponse(PaapiModel):
    search_result: SearchResult | None = Field(default=None, alias="SearchResult")
    errors: list[PaapiErrorEntry] = Field(default_factory=list, alias="Errors")


# =============================================================================
# Normalized lookup result
# =============================================================================


@dataclass
class ItemFound:
    """An item the upstream returned, flattened to the fields we store."""

    asin: str
    title: str | None = None
    brand: str | None = None
    manufacturer: str | None = None
    images: list[dict[str, Any]] = field(default_factory=list)
    detail_page_url: str | None = None
    price: float | None = None
    saving_basis: float | None = None
    currency: str | None = None
    display_price: str | None = None
    availability_type: str | None = None
    availability_message: str | None = None
    review_count: int | None = None
    star_rating: float | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_item(cls, item: PaapiItem, raw: dict[str, Any] | None = None) -> "ItemFound":
        info = item.item_info or ItemInfo()
        by_line = info.by_line_info or ByLineInfo()
        listing = item.offers.listings[0] if item.offers and item.offers.listings else Listing()
        price = listing.price or Money()
        saving_basis = listing.saving_basis or Money()
        availability = listing.availability or Availability()
        reviews = item.customer_reviews or CustomerReviews()

        return cls(
            asin=item.asin,
            title=info.title.display_value if info.title else None,
            brand=by_line.brand.display_value if by_line.brand else None,
            manufacturer=by_line.manufacturer.display_value if by_line.manufacturer else None,
            images=_image_variants(item.images),
            detail_page_url=item.detail_page_url,
            price=price.amount,
            saving_basis=saving_basis.amount,
            currency=price.currency,
            display_price=price.display_amount,
            availability_type=availability.type,
            availability_message=availability.message,
            review_count=reviews.count,
            star_rating=reviews.star_rating.value if reviews.star_rating else None,
            raw=raw if raw is not None else item.model_dump(by_alias=True, exclude_none=True),
        )


@dataclass
class ItemAbsent:
    """The upstream answered but did not return the requested item."""

    asin: str


ItemLookup = ItemFound | ItemAbsent


def _image_variants(images: Images | None) -> list[dict[str, Any]]:
    if not images or not images.primary:
        return []
    variants = []
    for name in ("Large", "Medium", "Small"):
        size = getattr(images.primary, name.lower())
        if size and size.url:
            variants.append(
                {"url": size.url, "width": size.width, "height": size.height, "variant": name}
            )
    return variants
