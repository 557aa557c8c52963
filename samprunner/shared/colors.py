"""
Terminal colour codes used by the CLI frontend.
"""

COLOR_RESET = "\033[0m"
COLOR_INFO = "\033[0;36m"
COLOR_PROMPT = "\033[1;33m"
COLOR_SUCCESS = "\033[0;32m"
COLOR_WARNING = "\033[0;33m"
COLOR_ERROR = "\033[0;31m"
