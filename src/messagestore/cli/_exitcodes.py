"""Process exit codes used by the CLI."""

SUCCESS = 0
GENERAL_ERROR = 1
USAGE_ERROR = 2
NOT_FOUND = 3
BACKEND_ERROR = 4
