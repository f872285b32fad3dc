# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Do NOT commit real secrets. Use .env (local, gitignored).

This file exists to make the repo self-documenting even without opening .env.example.
"""

ENV_VARS = {
    # App / logging
    "TASKDECK_APP_NAME": "App display name (default: taskdeck).",
    "TASKDECK_LOG_LEVEL": "Console logging level (default: INFO). The log file always gets DEBUG.",
    # Hosted service
    "TASKDECK_SERVICE_URL": "Project URL of the hosted service (fallback: SUPABASE_URL).",
    "TASKDECK_API_KEY": "Public (anon) API key of the project (fallback: SUPABASE_ANON_KEY).",
    "TASKDECK_HTTP_TIMEOUT_SECONDS": "HTTP request timeout (default: 15).",
    # Redirect targets for email links and OAuth
    "TASKDECK_SITE_URL": "Base URL used in confirmation/reset/OAuth redirects (default: http://localhost:3000).",
    "TASKDECK_LOGIN_PATH": "Where the route guard sends signed-out users (default: /login).",
    # Paths (gitignored)
    "TASKDECK_DATA_DIR": "Local data directory (default: .local/taskdeck).",
    "TASKDECK_SESSION_PATH": "Persisted session JSON (default: <data_dir>/session.json).",
    # Session tuning
    "TASKDECK_REFRESH_MARGIN_SECONDS": "Refresh the access token when it expires sooner than this (default: 90).",
    "TASKDECK_AUTO_REFRESH_INTERVAL_SECONDS": "Background refresh check interval (default: 30).",
    # Realtime tuning
    "TASKDECK_REALTIME_MAX_RETRIES": "Consecutive failed resubscribes before reporting Disconnected (default: 5).",
    "TASKDECK_REALTIME_RETRY_BASE_SECONDS": "First reconnect delay; doubles per attempt (default: 1).",
    "TASKDECK_REALTIME_RETRY_MAX_SECONDS": "Upper bound for the reconnect delay (default: 30).",
    "TASKDECK_REALTIME_HEARTBEAT_SECONDS": "Websocket heartbeat interval (default: 25).",
}
