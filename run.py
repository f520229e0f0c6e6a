#!/usr/bin/env python3
"""
Retail Ledger Service Entry Point

Starts the FastAPI server on the configured host and port.
"""

import sys

from retail_ledger.config import get_config
from retail_ledger.logging_config import setup_logging
from retail_ledger.api import run_server


if __name__ == "__main__":
    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)

    print("Starting Retail Ledger Service...")
    print(f"Storage: {config.database_url}")
    print(f"Currency: {config.currency}, all amounts use Decimal precision")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(host=config.api_host, port=config.api_port, debug=False)
    except KeyboardInterrupt:
        print("\nShutting down Retail Ledger Service...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
