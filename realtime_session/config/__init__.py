"""
Configuration module for the realtime session client.

Key components:
- constants: protocol endpoints, headers, timeouts and buffer bounds shared
  across the package.
- logging_config: console and rotating-file logging under the package logger.
- settings: environment-backed connection settings, with `.env` support.

Usage examples:
```python
from realtime_session.config.logging_config import configure_logging
from realtime_session.config.settings import RealtimeSettings

logger = configure_logging()
settings = RealtimeSettings.from_env()
logger.info(f"Using model {settings.model}")
```
"""
