"""
Utilities Package - Helper modules.

- http: HTTP client with retry and timeout management
- config: TOML configuration loading
"""

from .http import (
    HTTPClient,
    HTTPClientConfig,
    get_http_client,
    close_http_client,
)

from .config import (
    load_config,
    get_fallback_config,
)

__all__ = [
    # HTTP
    'HTTPClient',
    'HTTPClientConfig',
    'get_http_client',
    'close_http_client',

    # Config
    'load_config',
    'get_fallback_config',
]
