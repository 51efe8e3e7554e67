from .monitoring import MonitoringConfig, MonitoringConfigError, get_monitoring_config
from .settings import settings

__all__ = ["MonitoringConfig", "MonitoringConfigError", "settings", "get_monitoring_config"]
