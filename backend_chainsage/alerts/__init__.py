"""
Alerts — risk events, the durable event log and live subscriber fan-out.
"""

from backend_chainsage.alerts.broadcaster import EventBroadcaster, Subscriber
from backend_chainsage.alerts.events import RiskEvent

__all__ = ["EventBroadcaster", "RiskEvent", "Subscriber"]
