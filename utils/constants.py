"""
utils/constants.py

Purpose: Centralized static content

- User-facing messages of the Mini App bridge
- Error texts for each delivery failure kind

(Prevents hardcoding across the codebase)
"""

# ============================================================
# DELIVERY STATES
# ============================================================

LOADING_MESSAGE = "Connecting you to the bot..."

SUCCESS_MESSAGE = "Done! Opening the chat..."

DEFAULT_ERROR_MESSAGE = "Unable to connect. Please try again."

# ============================================================
# DELIVERY ERRORS
# ============================================================

INIT_FAILED_MESSAGE = "Failed to initialize. Please reopen from Telegram."

TIMEOUT_MESSAGE = "Connection timeout"

NETWORK_ERROR_MESSAGE = "Network error"

SERVER_ERROR_MESSAGE = "Server error ({status})"

CONNECTION_FAILED_MESSAGE = "Connection failed. Please try again."

