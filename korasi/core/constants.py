"""
Project constants definitions
"""

# ============================================================
# Local State
# ============================================================

DEFAULT_CONFIG_PATH = "~/.korasi/config.toml"
DEFAULT_STATE_DIR = "~/.korasi/state"
CACHED_INSTANCE_KEY = "instance"

# ============================================================
# SSH Default Values
# ============================================================

DEFAULT_SSH_PORT = 22
DEFAULT_SSH_TIMEOUT = 10
DEFAULT_SSH_USER = "ubuntu"
DEFAULT_SSH_KEY_NAME = "ec2-ssh-key"
DEFAULT_SSH_KEY_PATH = "~/.ssh/ec2-ssh-key.pem"
SSH_KEY_MODE = 0o400

# ============================================================
# Transport Session
# ============================================================

DEFAULT_CONNECT_RETRIES = 5
DEFAULT_RETRY_BACKOFF = 2.0
MAX_RETRY_BACKOFF = 30.0
CHANNEL_BUFFER_SIZE = 32768
DEFAULT_TERM = "xterm-256color"

# ============================================================
# Path Mapping
# ============================================================

DEFAULT_ROOT_FOLDER = "root"
ALWAYS_IGNORED = (".git",)
IGNORE_FILE_NAMES = (".gitignore", ".ignore")

# ============================================================
# Provisioning Default Values
# ============================================================

DEFAULT_PROFILE = "default"
DEFAULT_REGION = "ap-southeast-1"
DEFAULT_INSTANCE_TYPE = "t4g.micro"
DEFAULT_SETUP_SCRIPT = "start_up.sh"
DEFAULT_TAG_KEY = "application"
DEFAULT_TAG_VALUE = "hpc-launcher"
DEFAULT_SECURITY_GROUP = "allow-ssh"
DEFAULT_BOOT_TIMEOUT = 300.0
DEFAULT_POLL_INTERVAL = 5.0
PUBLIC_IP_URL = "https://checkip.amazonaws.com"

# ============================================================
# Exit Codes
# ============================================================

EXIT_PROVISION_FAILED = 250
EXIT_CONNECT_FAILED = 251
EXIT_SYNC_FAILED = 252
EXIT_TUNNEL_FAILED = 253
EXIT_CONFIG_FAILED = 254
EXIT_UNEXPECTED = 255
