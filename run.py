#!/usr/bin/env python3
"""
FlashPay Entry Point

Starts the FastAPI server with host and port taken from FLASHPAY_* settings.
"""

import sys

from flashpay.api import run_server
from flashpay.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting FlashPay...")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server()
    except KeyboardInterrupt:
        print("\nShutting down FlashPay...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
