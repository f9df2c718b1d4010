#!/usr/bin/env python3
"""
GlobalPay Ledger Entry Point

Starts the FastAPI server with the ledger system.
"""

import sys

import uvicorn

from globalpay.config import get_config


if __name__ == "__main__":
    config = get_config()

    print("💸 Starting GlobalPay Ledger...")
    print(f"🗄️  Ledger store: {config.database_url}")
    print("💰 All financial calculations use Decimal precision")
    print(f"🌐 API available at: http://localhost:{config.api_port}")
    print(f"📚 Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        uvicorn.run(
            "globalpay.api:create_app",
            factory=True,
            host=config.api_host,
            port=config.api_port,
            workers=config.api_workers,
            log_level=config.log_level.lower()
        )
    except KeyboardInterrupt:
        print("\n👋 Shutting down GlobalPay Ledger...")
    except Exception as e:
        print(f"❌ Error starting server: {e}")
        sys.exit(1)
