"""Throttling constants.

Defaults and fixed formats shared by the engine, the digest and the
host wiring.
"""

# Rule defaults
DEFAULT_LIMIT = 100
DEFAULT_PERIOD_SECONDS = 60
DEFAULT_EXCEEDED_HANDLER = "slow_down"
DEFAULT_PREFIX = "THROTTLE"

# Identity attribute names
PREFIX_ATTRIBUTE = "prefix"
REMOTE_USER_ATTRIBUTE = "remote_user"
REMOTE_ADDR_ATTRIBUTE = "remote_addr"
USER_AGENT_ATTRIBUTE = "http_user_agent"

# Counter key format
ABSENT_VALUE_PLACEHOLDER = "* * *"
VALUE_SEPARATOR = ":"
WINDOW_SEPARATOR = "#"

# Redis connection pool
REDIS_MAX_CONNECTIONS = 50
