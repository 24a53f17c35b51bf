"""
Application constants for Issue Watcher.

Contains task statuses, coordination names and the contract limits for
LLM analysis output.
"""

# =============================================================================
# Analysis Tasks
# =============================================================================

TASK_QUEUED = "queued"
TASK_RUNNING = "running"
TASK_DONE = "done"
TASK_ERROR = "error"
TASK_CANCELED = "canceled"

TERMINAL_TASK_STATUSES = (TASK_DONE, TASK_ERROR, TASK_CANCELED)
ACTIVE_TASK_STATUSES = (TASK_QUEUED, TASK_RUNNING)

DEFAULT_TASK_PRIORITY = 100

# Candidate window read by the queue selector before the per-owner filter
QUEUE_WINDOW_MIN = 100
QUEUE_WINDOW_MAX = 1000

# =============================================================================
# Coordination
# =============================================================================

WORKER_LOCK_NAME = "llm_worker"
WORKER_LOCK_OWNER = "llm_worker"

# Scheduled continuation actions
ACTION_TICK = "tick"
ACTION_PROCESS_NEXT_PAGE = "process_next_page"
ACTION_SEND_REPORT_EMAIL = "send_report_email"

# =============================================================================
# LLM Output Contract
# =============================================================================

EXPLANATION_MAX_CHARS = 260
MAX_MATCHED_TERMS = 6
MAX_EVIDENCE_ITEMS = 4
ISSUE_BODY_PROMPT_CHARS = 3000

# Explanation written in place of a result once retries are exhausted
ANALYSIS_FAILED_EXPLANATION = "Analysis failed after retries."

# =============================================================================
# GitHub
# =============================================================================

GITHUB_GRAPHQL_ENDPOINT = "https://api.github.com/graphql"
GITHUB_REPO_URL_PATTERN = r"^https://github\.com/([\w.-]+)/([\w.-]+)$"
GITHUB_LOW_RATE_LIMIT = 100
GITHUB_LABELS_PER_ISSUE = 10
