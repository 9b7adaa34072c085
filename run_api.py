#!/usr/bin/env python3
"""
Script to run the Book Catalog API server.

Usage:
    python run_api.py

Settings come from the environment or a .env file; MONGODB_URL and
JWT_SECRET have no defaults.
"""

import sys

import uvicorn
from pydantic import ValidationError


def load_settings():
    """Import both settings objects, exiting with a readable report if invalid."""
    try:
        from api.config import config as api_config
        from utilities.config import config as catalog_config
    except ValidationError as e:
        print("❌ Invalid configuration:")
        for error in e.errors():
            field = ".".join(str(part) for part in error["loc"])
            print(f"   - {field.upper()}: {error['msg']}")
        sys.exit(1)
    return api_config, catalog_config


def main():
    """Run the API server."""
    api_config, catalog_config = load_settings()

    print("📚 Starting Book Catalog API Server")
    print(f"📡 Listening on {api_config.host}:{api_config.port} (debug={api_config.debug})")
    print(f"🔗 Public URL: {api_config.public_base_url}")
    print(f"🗄️  Database: {catalog_config.mongodb_database}")
    print(f"🖼️  Images: {catalog_config.get_images_path().resolve()}")
    print("=" * 50)

    uvicorn.run(
        "api.main:app",
        host=api_config.host,
        port=api_config.port,
        reload=api_config.debug,
        log_level=api_config.log_level.lower(),
        # The app's own structured logs already cover requests
        access_log=False
    )


if __name__ == "__main__":
    main()
