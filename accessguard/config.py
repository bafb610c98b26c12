"""
Central configuration for Access Guard.

All tunable parameters live here: where the nginx access log is, how long
an offending address stays locked, and the rules that decide what counts
as a malicious request.
"""

from pathlib import Path

# ---------------------------------------------------------------------------
# LOG PATHS
# ---------------------------------------------------------------------------
# nginx must write the access log with this format:
#   log_format noreferer '$remote_addr - $remote_user [$time_local] $msec '
#                        '"$request" $request_length $status $body_bytes_sent '
#                        '$request_time "$http_user_agent"';
ACCESS_LOG_PATH = "/var/log/nginx/access.log"

# Fallback when the nginx log does not exist (development, tests).
PROJECT_ROOT = Path(__file__).resolve().parent.parent
SAMPLE_LOG_PATH = PROJECT_ROOT / "logs" / "sample_access.log"

NGINX_LOG_FORMAT = (
    "log_format noreferer '$remote_addr - $remote_user [$time_local] $msec "
    "\"$request\" $request_length $status $body_bytes_sent $request_time "
    "\"$http_user_agent\"';"
)

# ---------------------------------------------------------------------------
# LOCKOUT
# ---------------------------------------------------------------------------
# Comment attached to every ufw REJECT rule we create. Rules without it are
# never touched.
LOCK_COMMENT = "accessguard"

# First lock lasts BASE_DELAY_SECONDS * 2, every further lock doubles it.
# The exponent stops growing at MAX_OFFENSES (1 hour * 2^10 = ~6 weeks).
BASE_DELAY_SECONDS = 3600
MAX_OFFENSES = 10

# If True, firewall commands are only logged, never executed.
DRY_RUN = True

# A hung ufw call must not block the analysis pass forever.
COMMAND_TIMEOUT_SECONDS = 10

# ---------------------------------------------------------------------------
# RULES
# ---------------------------------------------------------------------------
# Bad rules flag a request as malicious; the first match wins.
# Good rules veto a bad-rule match (e.g. own networks, health checks).
# Condition syntax:
#   eq|ne|ge|gt|le|lt|contains|starts-with|ends-with ( field , value, ... )
#   joined by 'and'. Fields: status (number), uri, ip, protocol ('strings').
BAD_RULES = [
    {"name": "hex-requests", "condition": "contains(uri, '\\x')"},
    {"name": "closed-connection", "condition": "eq(status, 444)"},
    {"name": "php-probes", "condition": "ends-with(uri, '.php') and ge(status, 400)"},
    {"name": "env-probes", "condition": "contains(uri, '/.env', '/.git/')"},
]

GOOD_RULES = [
    {"name": "local-network", "condition": "starts-with(ip, '127.', '192.168.', '10.')"},
]

# ---------------------------------------------------------------------------
# OUTPUT / STATE
# ---------------------------------------------------------------------------
OUTPUT_DIR = PROJECT_ROOT / "output"
ALERTS_FILE = OUTPUT_DIR / "alerts.json"

# Program log (JSON lines), rotated by size; older files are gzipped.
LOG_FILE = OUTPUT_DIR / "accessguard.log"
LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5

# Watermark and lock history survive restarts through this file.
STATE_DIR = PROJECT_ROOT / "state"
STATE_FILE = STATE_DIR / "state.json"

# Hashes of log lines already processed (one per line).
STORE_FILE = STATE_DIR / "seen_hashes.txt"
MAX_STORE_BYTES = 1024 * 1024 * 1024

# Log per-pass statistics and rule matches.
VERBOSE = True
