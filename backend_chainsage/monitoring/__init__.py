"""
Monitoring — the service facade over registry, pipeline and event log.
"""

from backend_chainsage.monitoring.service import MonitoringService, create_service

__all__ = ["MonitoringService", "create_service"]
