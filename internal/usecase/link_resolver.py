"""
Link Resolver.

Matches identifiers parsed from a filename against known products and
articles. Policy, applied in order:

1. no EAN token                     -> Unmatched("no EAN token")
2. EAN tokens match several products -> Ambiguous(candidates)
3. no product for the EAN            -> Unmatched("product not found")
4. SKU given, no such article        -> Unmatched("article not found for product")
   SKU given, article found          -> Linked(ean, sku)
5. no SKU                            -> Linked(ean, None)

Resolution is read-only.
"""
from internal.domain.linking import (
    REASON_ARTICLE_NOT_FOUND,
    REASON_NO_EAN,
    REASON_PRODUCT_NOT_FOUND,
    Ambiguous,
    Linked,
    LinkOutcome,
    Unmatched,
)
from internal.domain.media import ParsedFileKey
from internal.usecase.mdm_ports import IProductLookup
from pkg.logger.logger import get_logger


logger = get_logger(__name__)


class LinkResolver:
    """Decides where a media asset belongs."""

    def __init__(self, lookup: IProductLookup) -> None:
        """
        Initialize the resolver.

        Args:
            lookup: Product/article lookup capability.
        """
        self._lookup = lookup

    async def resolve(self, key: ParsedFileKey) -> LinkOutcome:
        """
        Resolve a parsed filename key.

        Args:
            key: Identifiers parsed from the filename.

        Returns:
            Linked, Ambiguous or Unmatched.
        """
        candidates = key.ean_candidates or ((key.ean,) if key.ean else ())
        if not candidates:
            return Unmatched(REASON_NO_EAN)

        products: list[str] = []
        for ean in candidates:
            for product_ean in await self._lookup.find_products(ean):
                if product_ean not in products:
                    products.append(product_ean)

        if len(products) > 1:
            logger.warning(
                "Media key matches several products",
                eans=list(candidates),
                products=products,
            )
            return Ambiguous(candidates=tuple(products))

        if not products:
            return Unmatched(REASON_PRODUCT_NOT_FOUND)

        product_ean = products[0]
        if key.sku is None:
            return Linked(product_ean=product_ean)

        article_sku = await self._lookup.find_article(key.sku, product_ean)
        if article_sku is None:
            return Unmatched(REASON_ARTICLE_NOT_FOUND)
        return Linked(product_ean=product_ean, article_sku=article_sku)
