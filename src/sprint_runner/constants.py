STATE_DIR_NAME = ".sprint_runner"
BOARD_CONFIG_FILE = "board.yaml"
SPRINT_CONFIG_FILE = "sprint.yaml"
LOGS_DIR = "logs"
REPORTS_DIR = "reports"

STATUS_FIELD_NAME = "Status"

BOARD_STATUS_TODO = "Todo"
BOARD_STATUS_IN_PROGRESS = "In Progress"
BOARD_STATUS_TESTING = "Testing | Validating"
BOARD_STATUS_REVIEW = "Review"
BOARD_STATUS_DONE = "Done"

BLOCKED_LABEL = "blocked"
GATE_LABEL = "gate"

STARTED_MARKER = "🚀 Task started"
BLOCKED_MARKER = "⛔ Task blocked"
VALIDATION_FAILED_MARKER = "❌ Validation failed"
REVIEW_READY_MARKER = "👀 Ready for review"

DEFAULT_VALIDATION_TIMEOUT_SECONDS = 900
DEFAULT_LOG_TAIL_CHARS = 2000
DEFAULT_GH_LIST_LIMIT = 500

# Remediation hints shown in the completion report, keyed by task category
REMEDIATION_STEPS = {
    "done": "Confirm the unchecked items were delivered and check them off on the issue, "
    "or move them to a follow-up issue.",
    "in_progress": "Resume the sprint and finish the unchecked items before review.",
    "not_started": "Start the task with `sprint-runner run`, or move it to a later sprint milestone.",
    "blocked": "Resolve the blocker recorded in the issue comments, then answer `retry` for this task.",
}
