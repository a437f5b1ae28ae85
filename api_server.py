"""
Zlink claim page server

Run: uvicorn api_server:app --host 0.0.0.0 --port 8000
"""

import os

from config.logging import setup_logging
from config.sentry import init_sentry
from zlink.api.app import create_app

# Setup logging at module level (must run before app creation)
# This ensures logging works when uvicorn imports the module
setup_logging("api")
init_sentry()

app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api_server:app",
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=int(os.getenv("API_PORT", "8000")),
        log_config=None,
    )
