"""
Monitoring package for the Google Meet MCP Server.
Provides health aggregation, metrics collection and API call tracking.
"""

from .metrics import (
    ApiPerformanceStat,
    MetricEvent,
    MetricsCollector,
    MetricsData,
    MetricsMiddleware,
    SystemMetrics,
    ToolUsageStat,
)
from .api_monitor import (
    ActiveCall,
    ApiMonitor,
    MonitoredCall,
    MonitoredClient,
    QuotaInfo,
    RateLimitInfo,
    extract_status_code,
    parse_retry_after,
)
from .health import (
    ApiEndpointHealth,
    ApiGroupHealth,
    AuthHealth,
    CredentialProvider,
    DependencyHealth,
    HealthChecker,
    HealthState,
    HealthStatus,
    MemoryUsage,
    worst_status,
)

__all__ = [
    'ActiveCall',
    'ApiEndpointHealth',
    'ApiGroupHealth',
    'ApiMonitor',
    'ApiPerformanceStat',
    'AuthHealth',
    'CredentialProvider',
    'DependencyHealth',
    'HealthChecker',
    'HealthState',
    'HealthStatus',
    'MemoryUsage',
    'MetricEvent',
    'MetricsCollector',
    'MetricsData',
    'MetricsMiddleware',
    'MonitoredCall',
    'MonitoredClient',
    'QuotaInfo',
    'RateLimitInfo',
    'SystemMetrics',
    'ToolUsageStat',
    'extract_status_code',
    'parse_retry_after',
    'worst_status',
]
