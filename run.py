#!/usr/bin/env python3
"""
Coin Ledger Entry Point

Starts the FastAPI interaction server for the coin ledger bot.
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from coin_ledger.api import run_server
from coin_ledger.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("🪙 Starting Coin Ledger...")
    print(f"💾 Ledger backend: {config.ledger_backend}")
    print(f"🔁 Transfer strategy: {config.transfer_strategy}")
    print(f"🌐 Interactions endpoint: http://{config.api_host}:{config.api_port}/interactions")
    print()
    
    try:
        run_server(
            host=config.api_host,
            port=config.api_port,
            debug=False
        )
    except KeyboardInterrupt:
        print("\n👋 Shutting down Coin Ledger...")
    except Exception as e:
        print(f"❌ Error starting server: {e}")
        sys.exit(1)
