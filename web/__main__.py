"""
Web entry point

Run:
    python -m web
"""

import uvicorn

from core.constants import Defaults

if __name__ == "__main__":
    uvicorn.run(
        "web.app:app",
        host=Defaults.WEB_HOST,
        port=Defaults.WEB_PORT,
        reload=False,
        log_config=None,  # keep the handlers from core.logging
    )
