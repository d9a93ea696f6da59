"""
Project constants definitions
"""

# ============================================================
# Endpoint Defaults
# ============================================================

DEFAULT_ENDPOINT_NAME = "default"
DEFAULT_SSH_PORT = 22
DEFAULT_SSH_TIMEOUT = 10
DEFAULT_REMOTE_BIND_PORT = 2222
DEFAULT_REMOTE_BIND_ADDRESS = "127.0.0.1"
DEFAULT_LOCAL_TARGET_HOST = "localhost"
DEFAULT_LOCAL_TARGET_PORT = 22
DEFAULT_KEEPALIVE_INTERVAL = 30
DEFAULT_KEEPALIVE_RETRIES = 3
DEFAULT_THROTTLE_INTERVAL = 30
DEFAULT_RESTART_POLICY = "always"

# ============================================================
# Service Registration
# ============================================================

LABEL_PREFIX = "com.mole.tunnel"
TUNNEL_TAG_ENV = "MOLE_TUNNEL"
LAUNCH_AGENTS_DIR = "~/Library/LaunchAgents"
SYSTEMD_USER_DIR = "~/.config/systemd/user"
NETWORK_WAIT_SECONDS = 30

# ============================================================
# Supervision Timing
# ============================================================

DEFAULT_STARTUP_WAIT = 2.0
DEFAULT_PROBE_TIMEOUT = 10.0
DEFAULT_PROBE_INTERVAL = 1.0
DEFAULT_STOP_GRACE = 1.0

# ============================================================
# Credentials
# ============================================================

DEFAULT_KEY_DIR = "~/.ssh/tunnel-clients"
AUTHORIZED_KEYS_PATH = "~/.ssh/authorized_keys"
KEY_SUFFIX = "_ed25519"
TUNNEL_MARKER = "@tunnel-"
KEY_DIR_MODE = 0o700
PRIVATE_KEY_MODE = 0o600
PUBLIC_KEY_MODE = 0o644
SSH_DIR_MODE = 0o700
AUTHORIZED_KEYS_MODE = 0o600

# ============================================================
# Local State
# ============================================================

DEFAULT_STATE_DIR = "~/.mole/state"
DEFAULT_LOG_DIR = "/tmp/mole"
DEFAULT_CONFIG_PATH = "~/.mole/config.toml"
DEFAULT_LOG_LINES = 10

# ============================================================
# Reachability
# ============================================================

INTERNET_PROBE_HOST = "8.8.8.8"
INTERNET_PROBE_PORT = 53
REACHABILITY_TIMEOUT = 3.0

# ============================================================
# Gateway
# ============================================================

SSHD_CONFIG_PATH = "/etc/ssh/sshd_config"
MOSH_PORT_START = 60000
MOSH_PORT_END = 61000
INSIDE_HOST_PACKAGES = ("autossh", "mosh")
GATEWAY_PACKAGES = ("mosh",)

# ============================================================
# SSH Config
# ============================================================

SSH_CONFIG_PATH = "~/.ssh/config"
