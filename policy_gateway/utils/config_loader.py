"""
Configuration loader for the policy gateway
"""

import logging
import os
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from policy_gateway.rating.models import Benefit, Limit, Package, Product, ProductStatus, RiskFactor
from policy_gateway.rating.rate_table import RateCatalog

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent.parent


class RateTableConfig(BaseModel):
    """Rate-table snapshot caching"""

    cache_ttl_seconds: float = Field(default=300.0, ge=0.0)
    catalog_path: str = "config/rate_tables.yml"


class PaymentsConfig(BaseModel):
    """Payment initiation defaults"""

    default_currency: str = "USD"
    supported_currencies: List[str] = Field(default_factory=lambda: ["USD", "ZIG"])
    gateway_timeout_seconds: float = Field(default=30.0, gt=0.0)
    reference_prefix: str = "POL"
    stale_after_minutes: int = Field(default=30, ge=1)

    @field_validator("default_currency")
    @classmethod
    def _upper(cls, v: str) -> str:
        return v.upper()

    @field_validator("supported_currencies")
    @classmethod
    def _upper_all(cls, v: List[str]) -> List[str]:
        return [c.upper() for c in v]


class LimitsConfig(BaseModel):
    enforce: bool = False


class IPFilterConfig(BaseModel):
    """IP whitelist / blacklist for the HTTP adapter"""

    enabled: bool = False
    fail_open: bool = True
    whitelist: List[str] = Field(default_factory=list)
    blacklist: List[str] = Field(default_factory=list)


class IntegrationsConfig(BaseModel):
    mode: Literal["mock", "real"] = "mock"
    partner_payment_api_url: str = ""
    partner_payment_api_key: str = ""


class StorageConfig(BaseModel):
    database_url: Optional[str] = None
    policy_db_urls: Dict[str, str] = Field(default_factory=dict)
    redis_url: Optional[str] = None


class GatewayConfig(BaseModel):
    """Complete gateway configuration"""

    rate_table: RateTableConfig = Field(default_factory=RateTableConfig)
    payments: PaymentsConfig = Field(default_factory=PaymentsConfig)
    limits: LimitsConfig = Field(default_factory=LimitsConfig)
    ip_filter: IPFilterConfig = Field(default_factory=IPFilterConfig)
    integrations: IntegrationsConfig = Field(default_factory=IntegrationsConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    api_keys: List[str] = Field(default_factory=list)


def _truthy(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def apply_env_overrides(data: Dict[str, Any], env: Mapping[str, str]) -> Dict[str, Any]:
    """Layer recognised environment variables over the YAML document."""
    data = dict(data or {})
    storage = dict(data.get("storage") or {})
    integrations = dict(data.get("integrations") or {})
    ip_filter = dict(data.get("ip_filter") or {})

    if env.get("DATABASE_URL"):
        storage["database_url"] = env["DATABASE_URL"]
    if env.get("REDIS_URL"):
        storage["redis_url"] = env["REDIS_URL"]
    policy_dbs = dict(storage.get("policy_db_urls") or {})
    for currency in ("USD", "ZIG"):
        if env.get(f"POLICY_DB_{currency}_URL"):
            policy_dbs[currency] = env[f"POLICY_DB_{currency}_URL"]
    storage["policy_db_urls"] = policy_dbs

    if env.get("INTEGRATIONS_MODE"):
        integrations["mode"] = env["INTEGRATIONS_MODE"].strip().lower()
    if env.get("PARTNER_PAYMENT_API_URL"):
        integrations["partner_payment_api_url"] = env["PARTNER_PAYMENT_API_URL"]
    if env.get("PARTNER_PAYMENT_API_KEY"):
        integrations["partner_payment_api_key"] = env["PARTNER_PAYMENT_API_KEY"]

    if env.get("IP_FILTER_FAIL_OPEN"):
        ip_filter["fail_open"] = _truthy(env["IP_FILTER_FAIL_OPEN"])

    if env.get("API_KEYS"):
        data["api_keys"] = [k.strip() for k in env["API_KEYS"].split(",") if k.strip()]

    data["storage"] = storage
    data["integrations"] = integrations
    data["ip_filter"] = ip_filter
    return data


def load_gateway_config(
    config_path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> GatewayConfig:
    """
    Load and validate gateway configuration from YAML plus environment

    Args:
        config_path: Path to config file. Defaults to config/gateway_config.yml
        env: Environment mapping. Defaults to os.environ

    Returns:
        Validated GatewayConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValidationError: If config doesn't match schema
    """
    if config_path is None:
        config_path = PROJECT_ROOT / "config" / "gateway_config.yml"

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        config_data = yaml.safe_load(f) or {}

    config_data = apply_env_overrides(config_data, os.environ if env is None else env)
    try:
        config = GatewayConfig(**config_data)
        logger.info("Successfully loaded config from %s", config_path)
        return config
    except ValidationError as e:
        logger.error("Config validation failed: %s", e)
        raise


# ---------------------------------------------------------------------------
# Rate catalogue
# ---------------------------------------------------------------------------

def _dec(value: Any) -> Optional[Decimal]:
    return None if value is None else Decimal(str(value))


def build_rate_catalog(data: Mapping[str, Any]) -> RateCatalog:
    """Turn a rate_tables.yml document into a RateCatalog"""
    return RateCatalog(
        products=[
            Product(
                product_id=p["product_id"],
                rating_strategy=p["rating_strategy"],
                status=ProductStatus(p.get("status", "ACTIVE")),
                name=p.get("name", ""),
                category=p.get("category", ""),
            )
            for p in data.get("products") or []
        ],
        packages=[
            Package(
                package_id=p["package_id"],
                product_id=p["product_id"],
                rate=Decimal(str(p["rate"])),
                currency=p.get("currency", "USD"),
                minimum_premium=_dec(p.get("minimum_premium")),
                sort_order=int(p.get("sort_order", 0)),
                is_active=bool(p.get("is_active", True)),
                name=p.get("name", ""),
            )
            for p in data.get("packages") or []
        ],
        benefits=[
            Benefit(package_id=b["package_id"], type=b["type"], value=str(b["value"]), unit=b.get("unit", ""))
            for b in data.get("benefits") or []
        ],
        limits=[
            Limit(
                package_id=l["package_id"],
                min_age=l.get("min_age"),
                max_age=l.get("max_age"),
                min_family_size=l.get("min_family_size"),
                max_family_size=l.get("max_family_size"),
                min_sum_insured=_dec(l.get("min_sum_insured")),
                max_sum_insured=_dec(l.get("max_sum_insured")),
            )
            for l in data.get("limits") or []
        ],
        risk_factors=[
            RiskFactor(
                product_id=f["product_id"],
                factor_type=f["factor_type"],
                factor_key=str(f["factor_key"]),
                multiplier=_dec(f.get("multiplier")),
                addition=_dec(f.get("addition")),
                description=f.get("description", ""),
                is_active=bool(f.get("is_active", True)),
            )
            for f in data.get("risk_factors") or []
        ],
    )


def load_rate_catalog(catalog_path: Optional[Path] = None) -> RateCatalog:
    """Load the rate catalogue seed. Relative paths resolve against the project root."""
    if catalog_path is None:
        catalog_path = PROJECT_ROOT / "config" / "rate_tables.yml"
    catalog_path = Path(catalog_path)
    if not catalog_path.is_absolute():
        catalog_path = PROJECT_ROOT / catalog_path

    if not catalog_path.exists():
        raise FileNotFoundError(f"Rate catalogue not found: {catalog_path}")

    with open(catalog_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    catalog = build_rate_catalog(data)
    logger.info(
        "Loaded rate catalogue from %s: %d products, %d packages",
        catalog_path,
        len(catalog.products),
        len(catalog.packages),
    )
    return catalog
