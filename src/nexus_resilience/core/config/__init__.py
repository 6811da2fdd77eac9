"""
Configuration Module

Centralized, type-safe configuration for the AI resilience layer.

Components:
-----------
- **settings.py**: Pydantic-based configuration with environment variable loading
- **constants.py**: Policy constants, provider priority and enums

Usage:
------
```python
from nexus_resilience.core.config import get_settings
from nexus_resilience.core.config.constants import PROVIDER_PRIORITY, Stage

settings = get_settings()
threshold = settings.circuit_breaker.CB_FAILURE_THRESHOLD
```

Runtime toggles (`AI_CACHE_ENABLED`, `AI_FAILOVER_ENABLED`,
`RATE_LIMIT_FAIL_CLOSED`) are read through `get_feature_flags()`, which always
reflects the current environment.
"""

from nexus_resilience.core.config.settings import (
    FeatureFlags,
    Settings,
    get_feature_flags,
    get_settings,
    parse_bool_flag,
    reload_settings,
)

__all__ = [
    "FeatureFlags",
    "Settings",
    "get_feature_flags",
    "get_settings",
    "parse_bool_flag",
    "reload_settings",
]
