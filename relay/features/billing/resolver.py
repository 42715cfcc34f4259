"""
Product-to-plan resolver.

Maps Polar product ids to internal plan ids. The mapping is built once from
settings when the app is constructed and is read-only afterwards.
"""
import logging
import threading
from types import MappingProxyType
from typing import Mapping, Optional

from relay.core.config import Settings
from relay.features.billing.plans import PLAN_IDS

logger = logging.getLogger("relay")

# Settings attribute holding the product id for each plan
PLAN_PRODUCT_SETTINGS = {
    "pro": "POLAR_PRO_PRODUCT_ID",
    "master": "POLAR_MASTER_PRODUCT_ID",
}


class ProductPlanResolver:
    """Immutable-after-init product id -> plan id lookup."""

    def __init__(self):
        self._product_to_plan: Mapping[str, str] = MappingProxyType({})
        self._plan_to_product: Mapping[str, str] = MappingProxyType({})
        self._initialized = False
        self._lock = threading.Lock()

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self, settings_obj: Settings) -> None:
        """
        Build the mapping from configuration.

        Safe to call again; the mapping is rebuilt from the same settings and
        swapped in atomically.
        """
        product_to_plan = {}
        for plan_id in PLAN_IDS:
            product_id = (getattr(settings_obj, PLAN_PRODUCT_SETTINGS[plan_id], None) or "").strip()
            if not product_id:
                logger.warning("resolver.product_missing", extra={"plan_id": plan_id})
                continue
            if product_id in product_to_plan:
                logger.warning(
                    "resolver.product_duplicate",
                    extra={"plan_id": plan_id, "product_id": product_id},
                )
                continue
            product_to_plan[product_id] = plan_id

        with self._lock:
            self._product_to_plan = MappingProxyType(product_to_plan)
            self._plan_to_product = MappingProxyType({plan: product for product, plan in product_to_plan.items()})
            self._initialized = True

        logger.info("resolver.initialized products=%d", len(product_to_plan))

    def resolve(self, product_id: Optional[str]) -> Optional[str]:
        """Return the plan id for a product, or None when unknown."""
        if not product_id:
            return None
        return self._product_to_plan.get(product_id)

    def product_for_plan(self, plan_id: str) -> Optional[str]:
        return self._plan_to_product.get(plan_id)
