"""Configuration for the SSActiveWear relay"""
import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class ShopifyConfig:
    store_url: str = os.getenv('SHOPIFY_STORE_URL', '')
    access_token: Optional[str] = os.getenv('SHOPIFY_ACCESS_TOKEN')
    api_version: str = os.getenv('SHOPIFY_API_VERSION', '2024-10')
    request_timeout_seconds: float = float(os.getenv('SHOPIFY_TIMEOUT_SECONDS', '30'))
    webhook_secret: Optional[str] = os.getenv('SHOPIFY_WEBHOOK_SECRET')

    @property
    def is_configured(self) -> bool:
        return bool(self.store_url and self.access_token)

    @property
    def graphql_url(self) -> str:
        return f"https://{self.store_url}/admin/api/{self.api_version}/graphql.json"


@dataclass
class SupplierConfig:
    base_url: str = os.getenv('SSACTIVEWEAR_BASE_URL', 'https://api.ssactivewear.com/v2')
    user_id: Optional[str] = os.getenv('SSACTIVEWEAR_USER')
    api_key: Optional[str] = os.getenv('SSACTIVEWEAR_KEY')
    request_timeout_seconds: float = float(os.getenv('SSACTIVEWEAR_TIMEOUT_SECONDS', '60'))
    test_orders: bool = _env_bool('SSACTIVEWEAR_TEST_ORDERS', True)

    @property
    def is_configured(self) -> bool:
        return bool(self.user_id and self.api_key)


@dataclass
class PricingConfig:
    write_concurrency: int = int(os.getenv('PRICE_WRITE_CONCURRENCY', '5'))
    write_timeout_seconds: float = float(os.getenv('PRICE_WRITE_TIMEOUT_SECONDS', '20'))
    preview_limit: int = 20


@dataclass
class AutomationConfig:
    default_shipping_method: str = 'FXG'
    # SSActiveWear shipping method codes
    shipping_method_codes = {'FXG': '1', 'UPG': '1', 'FXE': '2', 'USP': '3'}


@dataclass
class SchedulerConfig:
    tick_seconds: int = int(os.getenv('SCHEDULER_TICK_SECONDS', '60'))
    run_hour: int = 3
    cleanup_retention_days: int = int(os.getenv('CLEANUP_RETENTION_DAYS', '30'))
    autostart: bool = _env_bool('SCHEDULER_AUTOSTART', True)
    run_lease_seconds: int = int(os.getenv('SCHEDULER_RUN_LEASE_SECONDS', '3600'))


@dataclass
class AlertConfig:
    low_stock_threshold: int = 10
    max_alerts: int = 1000


# Global configs
shopify = ShopifyConfig()
supplier = SupplierConfig()
pricing = PricingConfig()
automation = AutomationConfig()
scheduler = SchedulerConfig()
alerts = AlertConfig()
