from config.loader import get_config_loader

# Get the config loader instance
config = get_config_loader()

# Identity service configuration
API_BASE_URL = config.get("LOGWARE_API_URL", "http://localhost:8000/api/v1")

# Endpoint paths (hardcoded - follow the backend routes)
LOGIN_PATH = "/auth/login"
VERIFY_MFA_PATH = "/auth/verify-2fa"
SEND_MFA_CODE_PATH = "/auth/mfa/send-code"
REFRESH_TOKEN_PATH = "/auth/refresh-token"
CURRENT_USER_PATH = "/auth/me"
LOGOUT_PATH = "/auth/logout"
FORGOT_PASSWORD_PATH = "/auth/forgot-password"
CHANGE_PASSWORD_PATH = "/auth/change-password"

# Timeout configuration
# Connection timeout: Time to establish TCP connection
CONNECT_TIMEOUT = config.get("CONNECT_TIMEOUT", 5.0)
# Request timeout: Total timeout for a single identity/API request.
# A refresh that exceeds it counts as a failed refresh.
REQUEST_TIMEOUT = config.get("REQUEST_TIMEOUT", 15.0)

# Session behaviour
# Seconds before access token expiry at which the proactive refresh fires
PROACTIVE_REFRESH_LEAD_SECONDS = config.get("PROACTIVE_REFRESH_LEAD_SECONDS", 60)
# Shortest delay the proactive timer is armed with; half the remaining
# lifetime is used when the token is already inside the lead window
MIN_PROACTIVE_REFRESH_DELAY = config.get("MIN_PROACTIVE_REFRESH_DELAY", 5.0)
# Rejected MFA codes tolerated before the challenge is abandoned client-side
MFA_MAX_ATTEMPTS = config.get("MFA_MAX_ATTEMPTS", 5)

# Logging
LOG_LEVEL = config.get("LOG_LEVEL", "info")
DEBUG_LOG_FILE = config.get("DEBUG_LOG_FILE", "logware_debug.log")

# Credential storage
# One JSON key-value file per API origin lives below this directory
STORAGE_DIR = config.get_path("LOGWARE_STORAGE_DIR", "~/.logware")
STORAGE_FILE_NAME = "session.json"

# Storage keys (hardcoded - shared with the web dashboard)
ACCESS_TOKEN_KEY = "logware_token"
REFRESH_TOKEN_KEY = "logware_refresh_token"
REMEMBERED_IDENTIFIER_KEY = "logware_remembered_email"
# Keys written by older dashboard builds, removed whenever tokens are cleared
LEGACY_TOKEN_KEYS = (
    "accessToken",
    "refreshToken",
    "logware_access_token",
    "logware_token_expiry",
    "logware_user",
)
