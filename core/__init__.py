"""
Core shared library for Shopify Insights.

This package contains the logic used by the web API and the sync jobs:
- exceptions: Custom exception hierarchy
- validators: Input validation functions
- pagination: since_id cursor pagination for Shopify collections
- config: Centralized configuration
"""

# Import in dependency order
from core.exceptions import (
    AppError,
    ShopifyError,
    ShopifyConnectionError,
    ShopifyAPIError,
    ShopifyDataError,
    ValidationError,
)

from core.validators import (
    validate_date_range,
    validate_data_type,
    validate_limit,
    validate_pagination,
    validate_period,
    validate_shop_domain,
)

from core.pagination import ShopifyPaginator

from core.config import config

__all__ = [
    # Exceptions
    "AppError",
    "ShopifyError",
    "ShopifyConnectionError",
    "ShopifyAPIError",
    "ShopifyDataError",
    "ValidationError",
    # Validators
    "validate_date_range",
    "validate_data_type",
    "validate_limit",
    "validate_pagination",
    "validate_period",
    "validate_shop_domain",
    # Pagination
    "ShopifyPaginator",
    # Config
    "config",
]
