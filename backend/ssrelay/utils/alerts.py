"""Operator alerts raised by the relay"""
from datetime import datetime, timedelta
from typing import Dict, Any, List, Optional
import itertools
import logging

from ..config import alerts as alert_config
from .money import format_cents

logger = logging.getLogger(__name__)

LOG_LEVELS = {
    'info': logging.INFO,
    'warning': logging.WARNING,
    'critical': logging.ERROR,
}


class AlertManager:
    """In-memory alert feed per shop, newest first"""

    def __init__(self, db=None, max_alerts: int = None):
        self.db = db
        self.max_alerts = max_alerts or alert_config.max_alerts
        self._alerts: Dict[str, Dict[str, Any]] = {}
        self._counter = itertools.count(1)

    def create_alert(self, shop: str, alert_type: str, severity: str, title: str,
                     message: str, data: Dict = None) -> Dict[str, Any]:
        now = datetime.utcnow()
        alert_id = f"alert_{int(now.timestamp())}_{next(self._counter)}"
        alert = {
            'id': alert_id,
            'shop': shop,
            'type': alert_type,
            'severity': severity,
            'title': title,
            'message': message,
            'data': data or {},
            'acknowledged': False,
            'created_at': now.isoformat()
        }
        self._alerts[alert_id] = alert
        self._enforce_cap()
        logger.log(LOG_LEVELS.get(severity, logging.INFO), f"[{shop}] [{alert_type}] {title}: {message}")
        return alert

    def _enforce_cap(self):
        """Evict the oldest alerts past the cap, acknowledged ones first"""
        excess = len(self._alerts) - self.max_alerts
        if excess <= 0:
            return
        # dicts keep insertion order, so each list is oldest first
        acknowledged = [i for i, a in self._alerts.items() if a['acknowledged']]
        pending = [i for i, a in self._alerts.items() if not a['acknowledged']]
        for alert_id in (acknowledged + pending)[:excess]:
            del self._alerts[alert_id]

    def get_alerts(self, shop: Optional[str] = None, unacknowledged_only: bool = False,
                   severity: Optional[str] = None, limit: int = 50) -> List[Dict]:
        """Alerts matching the filters, most recent first; no shop means every shop"""
        matches = [
            a for a in self._alerts.values()
            if (shop is None or a['shop'] == shop)
            and (not unacknowledged_only or not a['acknowledged'])
            and (severity is None or a['severity'] == severity)
        ]
        matches.sort(key=lambda a: a['created_at'], reverse=True)
        return matches[:limit]

    def acknowledge_alert(self, shop: str, alert_id: str) -> bool:
        alert = self._alerts.get(alert_id)
        if alert is None or alert['shop'] != shop:
            return False
        alert['acknowledged'] = True
        alert['acknowledged_at'] = datetime.utcnow().isoformat()
        return True

    def prune_acknowledged(self, shop: str, older_than_days: int) -> int:
        """Drop the shop's acknowledged alerts created before the retention window"""
        cutoff = (datetime.utcnow() - timedelta(days=older_than_days)).isoformat()
        stale = [
            alert_id for alert_id, a in self._alerts.items()
            if a['shop'] == shop and a['acknowledged'] and a['created_at'] < cutoff
        ]
        for alert_id in stale:
            del self._alerts[alert_id]
        return len(stale)

    def low_stock_alert(self, shop: str, product: str, style_id: str, quantity: int):
        return self.create_alert(
            shop,
            'low_stock',
            'critical' if quantity <= 0 else 'warning',
            f"Low stock: {product}",
            f"SSActiveWear style {style_id} is down to {quantity} units",
            {'product': product, 'style_id': style_id, 'quantity': quantity}
        )

    def approval_needed_alert(self, shop: str, order_number: str, total_cents: int, reasons: List[str]):
        return self.create_alert(
            shop,
            'approval_needed',
            'info',
            f"Order #{order_number} is waiting for approval",
            f"${format_cents(total_cents)} held: {'; '.join(reasons) or 'manual mode'}",
            {'order_number': order_number, 'total_cents': total_cents, 'reasons': reasons}
        )

    def order_failed_alert(self, shop: str, order_number: str, error: str):
        return self.create_alert(
            shop,
            'order_failed',
            'critical',
            f"Order #{order_number} could not be submitted",
            error,
            {'order_number': order_number, 'error': error}
        )

    def job_failed_alert(self, shop: str, job_type: str, error: str):
        return self.create_alert(
            shop,
            'job_failed',
            'warning',
            f"Scheduled job failed: {job_type}",
            error,
            {'job_type': job_type, 'error': error}
        )
