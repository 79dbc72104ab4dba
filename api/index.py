"""Serverless ASGI entry point for the semantic search gateway.

The platform's Python runtime looks for a module-level ``app`` here.
"""

import os

if os.path.exists(".env"):
    # ↳ Only load .env if it exists (not available in production deployments)
    from dotenv import load_dotenv

    load_dotenv()

from semantic_search_gateway.config import get_settings  # noqa: E402
from semantic_search_gateway.api.main import create_app  # noqa: E402
from semantic_search_gateway.logging_utils import configure_logging  # noqa: E402

settings = get_settings()
configure_logging(settings)

# ↳ This is the ASGI application that the serverless runtime will execute
app = create_app(settings)

# For compatibility with different ASGI servers
application = app
