"""Default policy values shared across chunkflow."""

DEFAULT_QUALITY_THRESHOLD = 70
DEFAULT_SKIP_PROOFREAD_SCORE = 90
DEFAULT_MAX_RETRIES = 2
DEFAULT_POST_PROCESS_ATTEMPTS = 2
DEFAULT_POST_PROCESS_DELAY = 0.3
DEFAULT_PREVIOUS_CONTEXT_CHARS = 1800
DEFAULT_BATCH_UNIT_SIZE = 8000

# Score assumed when the quality stage returns something that is not JSON.
PARSE_FAILURE_SCORE = 70

# Running tasks never report full progress; 1.0 is reserved for completion.
MAX_RUNNING_PROGRESS = 0.99
