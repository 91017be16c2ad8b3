#!/usr/bin/env python3
import sys
import os

print("Running preflight import check...")
try:
    # Dummy values so the required-settings gate passes; nothing connects at import time
    os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
    os.environ.setdefault("ENGINE_SECRET_KEY", "preflight")
    os.environ.setdefault("ENGINE_VAULT_ACCESS_TOKEN", "preflight")
    os.environ.setdefault("TEAM_WALLET_ADDRESS", "0x0000000000000000000000000000000000000001")

    import kudifi.main
    print("Import kudifi.main: OK")

    print("Preflight check passed.")
    sys.exit(0)
except Exception as e:
    print(f"Preflight check FAILED: {e}")
    import traceback
    traceback.print_exc()
    sys.exit(1)
