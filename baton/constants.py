"""Constants used throughout the Baton codebase."""

# Timing defaults, in seconds
DEFAULT_POLL_INTERVAL_SECONDS = 30.0
DEFAULT_STATUS_GRACE_SECONDS = 300.0
DEFAULT_SUBMIT_TIMEOUT_SECONDS = 60.0
MAX_BACKOFF_SECONDS = 3600.0

# Attempts allowed for transient submission errors, even when max_attempts is lower
MIN_TRANSIENT_ATTEMPTS = 3

DEFAULT_QUEUE_SIZE = 100
DEFAULT_POLL_WORKERS = 4

# Files written into every task working directory
COMMAND_SCRIPT = ".command.sh"
COMMAND_WRAPPER = ".command.run"
COMMAND_STDOUT = ".command.out"
COMMAND_STDERR = ".command.err"
EXITCODE_FILE = ".exitcode"

# Where a run keeps its own state, relative to the output directory
STATE_DIR = ".baton"
MANIFEST_FILE = "manifest.db"
COORDINATOR_SCRIPT = "coordinator.sbatch"

DEFAULT_CONFIG_FILE = "baton.yaml"

# Exit code when a run cannot start: bad graph, config or manifest
FATAL_EXIT_CODE = 2

GREEN = "\x1b[32m"
RESET = "\x1b[0m"
