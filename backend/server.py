from fastapi import FastAPI, APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient
import os
import base64
import hashlib
import hmac
import logging
from pathlib import Path
from datetime import datetime
from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from ssrelay.config import shopify as shopify_config, scheduler as scheduler_config  # noqa: E402
from ssrelay.errors import InvalidTransitionError, NotFoundError  # noqa: E402
from ssrelay.models import PriceAdjustment, Schedule  # noqa: E402
from ssrelay.system import get_system, RelaySystem  # noqa: E402
from ssrelay.automation.tracking import tracking_payload  # noqa: E402
from ssrelay.analytics.engine import day_key  # noqa: E402

# MongoDB connection
mongo_url = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
client = AsyncIOMotorClient(mongo_url)
db = client[os.environ.get('DB_NAME', 'ssrelay')]

# Create the main app without a prefix
app = FastAPI()

# Create a router with the /api prefix
api_router = APIRouter(prefix="/api")

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Initialize relay system
relay_system: RelaySystem = None


def get_relay() -> RelaySystem:
    global relay_system
    if relay_system is None:
        relay_system = get_system(db)
    return relay_system


# ============== Error Mapping ==============

@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={'detail': str(exc)})


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
    return JSONResponse(status_code=409, content={'detail': str(exc)})


@app.exception_handler(ValueError)
async def validation_handler(request: Request, exc: ValueError):
    # Covers relay ValidationError and pydantic model errors raised in services
    return JSONResponse(status_code=400, content={'detail': str(exc)})


# ============== Request Models ==============

class VolumeRuleCreate(BaseModel):
    name: str
    description: Optional[str] = None
    priority: int = 0


class VolumeRuleUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[int] = None


class TiersUpdate(BaseModel):
    tiers: List[Dict[str, Any]]


class PremiumsUpdate(BaseModel):
    size_premiums: List[Dict[str, Any]]


class ProductsUpdate(BaseModel):
    products: List[Dict[str, Any]]


class PriceRuleCreate(BaseModel):
    name: str
    adjustment: PriceAdjustment
    priority: int = 0
    is_active: bool = True


class ProductMapCreate(BaseModel):
    shopify_product_id: str
    ss_style_id: str
    style_name: Optional[str] = None
    brand_name: Optional[str] = None
    base_price_cents: Optional[int] = Field(default=None, ge=0)


class SettingsUpdate(BaseModel):
    is_enabled: Optional[bool] = None
    auto_submit: Optional[bool] = None
    default_shipping_method: Optional[str] = None
    notify_email: Optional[str] = None
    min_order_value_cents: Optional[int] = None
    exclude_tags: Optional[str] = None


class TrackingCreate(BaseModel):
    carrier: str
    tracking_number: str


class OrderErrorReport(BaseModel):
    reason: str = Field(min_length=1)


class ScheduledJobCreate(BaseModel):
    job_type: str
    schedule: Schedule = Schedule.DAILY
    is_enabled: bool = True
    config: Dict[str, Any] = {}


class ScheduleUpdate(BaseModel):
    schedule: Schedule
    config: Optional[Dict[str, Any]] = None


# ============== Status ==============

@api_router.get("/")
async def root():
    return {"message": "SSActiveWear relay"}


@api_router.get("/status")
async def get_relay_status():
    """Get relay system status"""
    return get_relay().get_status()


# ============== Webhooks ==============

def verify_webhook(body: bytes, signature: Optional[str]) -> bool:
    """Shopify HMAC-SHA256 signature over the raw body"""
    if not shopify_config.webhook_secret:
        return True
    if not signature:
        return False
    digest = hmac.new(shopify_config.webhook_secret.encode(), body, hashlib.sha256).digest()
    return hmac.compare_digest(base64.b64encode(digest).decode(), signature)


@api_router.post("/webhooks/orders/create")
async def orders_create_webhook(request: Request):
    """Shopify orders/create webhook"""
    body = await request.body()
    if not verify_webhook(body, request.headers.get('X-Shopify-Hmac-Sha256')):
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    shop = request.headers.get('X-Shopify-Shop-Domain')
    if not shop:
        raise HTTPException(status_code=400, detail="Missing shop domain")
    return await get_relay().fulfillment.intake_order(shop, await request.json())


# ============== Volume Pricing ==============

@api_router.get("/volume-pricing")
async def get_volume_pricing(shop: str, product_id: str):
    """Tier table for the storefront"""
    return await get_relay().volume_pricing.get_storefront_tiers(shop, product_id)


@api_router.get("/volume-pricing/quote")
async def get_volume_quote(shop: str, product_id: str, quantity: int, size: Optional[str] = None):
    return await get_relay().volume_pricing.quote(shop, product_id, quantity, size)


@api_router.get("/volume-rules")
async def list_volume_rules(shop: str):
    return [r.model_dump() for r in await get_relay().volume_pricing.list_rules(shop)]


@api_router.post("/volume-rules")
async def create_volume_rule(shop: str, body: VolumeRuleCreate):
    rule = await get_relay().volume_pricing.create_rule(shop, body.name, body.description, body.priority)
    return rule.model_dump()


@api_router.get("/volume-rules/{rule_id}")
async def get_volume_rule(shop: str, rule_id: str):
    return (await get_relay().volume_pricing.get_rule(shop, rule_id)).model_dump()


@api_router.put("/volume-rules/{rule_id}")
async def update_volume_rule(shop: str, rule_id: str, body: VolumeRuleUpdate):
    rule = await get_relay().volume_pricing.update_settings(
        shop, rule_id, body.name, body.description, body.priority
    )
    return rule.model_dump()


@api_router.put("/volume-rules/{rule_id}/tiers")
async def save_volume_tiers(shop: str, rule_id: str, body: TiersUpdate):
    return (await get_relay().volume_pricing.save_tiers(shop, rule_id, body.tiers)).model_dump()


@api_router.put("/volume-rules/{rule_id}/size-premiums")
async def save_size_premiums(shop: str, rule_id: str, body: PremiumsUpdate):
    rule = await get_relay().volume_pricing.save_size_premiums(shop, rule_id, body.size_premiums)
    return rule.model_dump()


@api_router.put("/volume-rules/{rule_id}/products")
async def assign_rule_products(shop: str, rule_id: str, body: ProductsUpdate):
    return (await get_relay().volume_pricing.assign_products(shop, rule_id, body.products)).model_dump()


@api_router.post("/volume-rules/{rule_id}/toggle")
async def toggle_volume_rule(shop: str, rule_id: str):
    return (await get_relay().volume_pricing.toggle_rule(shop, rule_id)).model_dump()


@api_router.delete("/volume-rules/{rule_id}")
async def delete_volume_rule(shop: str, rule_id: str):
    if not await get_relay().volume_pricing.delete_rule(shop, rule_id):
        raise HTTPException(status_code=404, detail="Volume price rule not found")
    return {"deleted": True}


# ============== Bulk Pricing ==============

@api_router.post("/bulk-price/preview")
async def preview_bulk_price(shop: str, adjustment: PriceAdjustment):
    return await get_relay().pricing.preview(shop, adjustment)


@api_router.post("/bulk-price/apply")
async def apply_bulk_price(shop: str, adjustment: PriceAdjustment):
    return await get_relay().pricing.apply(shop, adjustment)


@api_router.get("/price-rules")
async def list_price_rules(shop: str):
    return [r.model_dump() for r in await get_relay().pricing.list_price_rules(shop)]


@api_router.post("/price-rules")
async def create_price_rule(shop: str, body: PriceRuleCreate):
    rule = await get_relay().pricing.create_price_rule(
        shop, body.name, body.adjustment, body.priority, body.is_active
    )
    return rule.model_dump()


@api_router.post("/price-rules/{rule_id}/toggle")
async def toggle_price_rule(shop: str, rule_id: str):
    return (await get_relay().pricing.toggle_price_rule(shop, rule_id)).model_dump()


@api_router.delete("/price-rules/{rule_id}")
async def delete_price_rule(shop: str, rule_id: str):
    if not await get_relay().pricing.delete_price_rule(shop, rule_id):
        raise HTTPException(status_code=404, detail="Price rule not found")
    return {"deleted": True}


# ============== Product Map ==============

@api_router.get("/products")
async def list_products(shop: str):
    return [p.model_dump() for p in await get_relay().inventory.list_products(shop)]


@api_router.post("/products")
async def map_product(shop: str, body: ProductMapCreate):
    product = await get_relay().inventory.map_product(shop, **body.model_dump())
    return product.model_dump()


@api_router.delete("/products/{product_id}")
async def remove_product(shop: str, product_id: str):
    await get_relay().inventory.remove_product(shop, product_id)
    return {"deleted": True}


@api_router.get("/products/brands")
async def list_brands(shop: str):
    return await get_relay().inventory.brands(shop)


# ============== Automation Settings ==============

@api_router.get("/automation/settings")
async def get_automation_settings(shop: str):
    return (await get_relay().fulfillment.get_settings(shop)).model_dump()


@api_router.put("/automation/settings")
async def save_automation_settings(shop: str, body: SettingsUpdate):
    fields = body.model_dump(exclude_none=True)
    return (await get_relay().fulfillment.save_settings(shop, **fields)).model_dump()


@api_router.post("/automation/toggle")
async def toggle_automation(shop: str):
    return (await get_relay().fulfillment.toggle_enabled(shop)).model_dump()


@api_router.post("/automation/process-pending")
async def process_pending_orders(shop: str):
    return await get_relay().fulfillment.process_pending_orders(shop)


# ============== Orders ==============

@api_router.get("/orders")
async def list_orders(shop: str, status: Optional[str] = None, limit: int = 50):
    statuses = status.split(',') if status else None
    jobs = await get_relay().fulfillment.list_jobs(shop, statuses, limit)
    return [j.model_dump() for j in jobs]


@api_router.get("/orders/{job_id}")
async def get_order(shop: str, job_id: str):
    relay = get_relay()
    job = await relay.fulfillment.get_job(shop, job_id)
    tracking = await relay.tracking.get_tracking_for_job(shop, job_id)
    return {'job': job.model_dump(), 'tracking': tracking_payload(tracking) if tracking else None}


@api_router.post("/orders/{job_id}/approve")
async def approve_order(shop: str, job_id: str):
    return (await get_relay().fulfillment.approve_job(shop, job_id)).model_dump()


@api_router.post("/orders/{job_id}/submit")
async def submit_order(shop: str, job_id: str):
    return (await get_relay().fulfillment.submit_job(shop, job_id)).model_dump()


@api_router.post("/orders/{job_id}/retry")
async def retry_order(shop: str, job_id: str):
    return (await get_relay().fulfillment.retry_job(shop, job_id)).model_dump()


@api_router.post("/orders/{job_id}/error")
async def fail_order(shop: str, job_id: str, body: OrderErrorReport):
    """Operator marks a job as failed, e.g. after a supplier-side cancellation"""
    return (await get_relay().fulfillment.mark_error(shop, job_id, body.reason)).model_dump()


# ============== Tracking ==============

@api_router.post("/orders/{job_id}/tracking")
async def create_tracking(shop: str, job_id: str, body: TrackingCreate):
    tracking = await get_relay().tracking.create_tracking(shop, job_id, body.carrier, body.tracking_number)
    return tracking_payload(tracking)


@api_router.post("/tracking/refresh-all")
async def refresh_all_tracking(shop: str):
    return await get_relay().tracking.refresh_all_tracking(shop)


@api_router.post("/tracking/{tracking_id}/refresh")
async def refresh_tracking(shop: str, tracking_id: str, override: bool = False):
    return await get_relay().tracking.refresh_tracking(shop, tracking_id, override=override)


# ============== Scheduled Jobs ==============

@api_router.get("/jobs")
async def list_scheduled_jobs(shop: str):
    return [j.model_dump() for j in await get_relay().scheduler.list_jobs(shop)]


@api_router.post("/jobs")
async def create_scheduled_job(shop: str, body: ScheduledJobCreate):
    job = await get_relay().scheduler.create_job(
        shop, body.job_type, body.schedule, body.is_enabled, body.config
    )
    return job.model_dump()


@api_router.put("/jobs/{job_id}")
async def update_scheduled_job(shop: str, job_id: str, body: ScheduleUpdate):
    return (await get_relay().scheduler.update_schedule(shop, job_id, body.schedule, body.config)).model_dump()


@api_router.post("/jobs/{job_id}/toggle")
async def toggle_scheduled_job(shop: str, job_id: str):
    return (await get_relay().scheduler.toggle_job(shop, job_id)).model_dump()


@api_router.post("/jobs/{job_id}/run")
async def run_scheduled_job(shop: str, job_id: str):
    return await get_relay().scheduler.run_job(shop, job_id)


@api_router.delete("/jobs/{job_id}")
async def delete_scheduled_job(shop: str, job_id: str):
    await get_relay().scheduler.delete_job(shop, job_id)
    return {"deleted": True}


@api_router.get("/scheduler/status")
async def get_scheduler_status():
    return get_relay().scheduler.get_status()


@api_router.post("/scheduler/start")
async def start_scheduler():
    return get_relay().start_automation()


@api_router.post("/scheduler/stop")
async def stop_scheduler():
    return get_relay().stop_automation()


# ============== Shipping ==============

@api_router.get("/shipping/profiles")
async def get_shipping_profiles():
    """Shopify delivery profiles and zone rates"""
    return await get_relay().shopify.get_delivery_profiles()


# ============== Reports & Alerts ==============

@api_router.get("/stats/daily")
async def get_daily_stats(shop: str, date: Optional[str] = None):
    """Counters for one day (YYYY-MM-DD), today by default"""
    analytics = get_relay().analytics
    return (await analytics.get_daily_stats(shop, date or day_key(datetime.utcnow()))).model_dump()


@api_router.get("/reports/period")
async def get_period_report(shop: str, period: str = '30d', format: str = 'json'):
    relay = get_relay()
    report = await relay.reports.generate_period_report(shop, period)
    if format == 'text':
        return PlainTextResponse(relay.reports.format_report_text(report))
    return report


@api_router.get("/reports/monthly")
async def get_monthly_report(shop: str, months: int = 6, format: str = 'json'):
    relay = get_relay()
    report = await relay.reports.generate_monthly_breakdown(shop, months)
    if format == 'text':
        return PlainTextResponse(relay.reports.format_report_text(report))
    return report


@api_router.get("/alerts")
async def get_alerts(shop: str, unacknowledged: bool = False, severity: str = None):
    return get_relay().alerts.get_alerts(shop, unacknowledged_only=unacknowledged, severity=severity)


@api_router.post("/alerts/{alert_id}/acknowledge")
async def acknowledge_alert(shop: str, alert_id: str):
    if not get_relay().alerts.acknowledge_alert(shop, alert_id):
        raise HTTPException(status_code=404, detail="Alert not found")
    return {"acknowledged": True}


# Include the router in the main app
app.include_router(api_router)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    """Create indexes and start the job loop"""
    logger.info("Server starting up...")
    relay = get_relay()
    await relay.ensure_indexes()
    if scheduler_config.autostart:
        relay.start_automation()
    logger.info("Server startup complete")


@app.on_event("shutdown")
async def shutdown_db_client():
    """Cleanup on shutdown"""
    if relay_system is not None:
        relay_system.stop_automation()
    client.close()
