"""
SpendGate Main Entry Point

Runs the API server with uvicorn.

Usage:
    python -m spendgate.main
    spendgate-server
"""

import logging

import uvicorn
from dotenv import load_dotenv

from spendgate.config import Settings


def main():
    """Start the API server."""
    load_dotenv()
    settings = Settings()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger = logging.getLogger("spendgate")

    from spendgate.server import SpendGateContainer, create_app

    container = SpendGateContainer(settings=settings)
    if settings.bootstrap_user_id:
        code, expires_at = container.tokens.create_pairing_code(settings.bootstrap_user_id)
        logger.info(
            f"Pairing code for {settings.bootstrap_user_id}: {code} "
            f"(expires {expires_at.isoformat()})"
        )

    app = create_app(container)

    print(f"\n{'=' * 50}")
    print("  SpendGate API Server")
    print(f"{'=' * 50}")
    print(f"  Host:  {settings.host}")
    print(f"  Port:  {settings.port}")
    print(f"  Cards: {container.cards.name}")
    print(f"  Docs:  http://{settings.host}:{settings.port}/docs")
    print(f"{'=' * 50}\n")

    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
