"""Simple server runner that keeps uvicorn alive."""
import signal
import sys

import uvicorn

from pharmabot.core.config import settings


def handle_signal(sig, frame):
    print(f"\nReceived signal {sig}, shutting down gracefully...")
    sys.exit(0)


signal.signal(signal.SIGINT, handle_signal)
signal.signal(signal.SIGTERM, handle_signal)

if __name__ == "__main__":
    print("=" * 50)
    print("  Starting PharmaCare WhatsApp Bot")
    print(f"  Environment: {settings.ENVIRONMENT}")
    print("=" * 50)
    uvicorn.run(
        "pharmabot.main:app",
        host="0.0.0.0",
        port=3000,
        log_level=settings.LOG_LEVEL.lower(),
    )
