#!/usr/bin/env python3
"""
shopsync API Startup Script

Starts the FastAPI server (webhooks, OAuth install, sync and metrics endpoints).
"""

import sys
from pathlib import Path

import uvicorn


def main():
    """Start the shopsync API server."""
    print("🚀 Starting shopsync API Server...")
    print("   🌐 Swagger UI:  http://localhost:4000/docs")
    print("   🔗 Webhooks:    POST /webhooks/receive")
    print("   🛒 Install:     GET  /auth/install?shop=<store>.myshopify.com")
    print("")

    if not Path(".env").exists():
        print("⚠️  WARNING: No .env file found!")
        print("   Required: DATABASE_URL, TOKEN_ENCRYPTION_KEY, SHOPIFY_API_KEY, SHOPIFY_API_SECRET, APP_URL")
        print("")

    try:
        uvicorn.run(
            "shopsync.main:app",
            host="0.0.0.0",
            port=4000,
            reload=True,
            reload_dirs=["shopsync"],
            log_level="info",
        )
    except KeyboardInterrupt:
        print("\n👋 Shutting down shopsync API server...")
    except Exception as e:
        print(f"❌ Error starting server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
