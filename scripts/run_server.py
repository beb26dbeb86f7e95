"""
Run SpendGate Server

Helper script to start the API with auto-reload for local development.
"""

import uvicorn

from spendgate.config import settings


def main():
    """Start the API server in reload mode."""
    print("=" * 60)
    print("  SpendGate API (development)")
    print("  Starting FastAPI server...")
    print("=" * 60)
    print(f"\n🌐 Service will run at: http://{settings.host}:{settings.port}")
    print(f"📊 API docs available at: http://{settings.host}:{settings.port}/docs")
    print("\nPress Ctrl+C to stop\n")

    uvicorn.run(
        "spendgate.server:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=True,
        log_level="info",
    )


if __name__ == "__main__":
    main()
