"""
Live check against a running SpendGate server.

Pairs with a code printed at server startup (SPENDGATE_BOOTSTRAP_USER_ID),
then walks one funded purchase from deposit to drain.

Usage:
    python verify_system_integrity.py <pairing-code> [base-url]
"""

import asyncio
import logging
import sys

import httpx

# Configure logging
logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger("SystemVerifier")

SERVER_URL = "http://127.0.0.1:8000"


async def verify_health(client: httpx.AsyncClient) -> bool:
    """Verify the server is reachable."""
    logger.info("🔍 Verifying server health...")
    try:
        resp = await client.get("/health")
        resp.raise_for_status()
    except httpx.HTTPError as e:
        logger.error(f"❌ Server unreachable: {e}")
        return False
    logger.info("✅ Server healthy.")
    return True


async def pair(client: httpx.AsyncClient, code: str) -> str | None:
    """Exchange the pairing code for a bearer token."""
    logger.info("🔍 Redeeming pairing code...")
    resp = await client.post("/pair", json={"code": code})
    if resp.status_code != 200:
        logger.error(f"❌ Pairing failed: {resp.json().get('error')}")
        return None
    logger.info(f"✅ Paired as {resp.json()['user_id']}.")
    return resp.json()["api_token"]


async def verify_funding_cycle(client: httpx.AsyncClient) -> bool:
    """Provision, deposit, purchase and complete one funded checkout."""
    logger.info("🔍 Verifying funding cycle...")

    await client.post("/provision")
    await client.put("/config", json={"always_ask": False, "block_new_merchants": False})

    resp = await client.post("/deposit", json={"amount": "25"})
    if resp.status_code != 200:
        logger.error(f"❌ Deposit failed: {resp.text}")
        return False

    resp = await client.post(
        "/purchase",
        json={"item": "Integrity check", "amount": "5", "merchant": "Verifier Store"},
    )
    body = resp.json()
    if body.get("status") != "approved":
        logger.error(f"❌ Purchase not auto-approved: {body}")
        return False
    logger.info(f"✅ Card ****{body['card_last4']} funded [{body['topup_id']}].")

    resp = await client.post("/complete", json={"topup_id": body["topup_id"], "success": False})
    if resp.json().get("status") != "drained":
        logger.error(f"❌ Drain failed: {resp.json()}")
        return False

    resp = await client.post("/complete", json={"topup_id": body["topup_id"], "success": False})
    if resp.json().get("status") != "already_drained":
        logger.error(f"❌ Second completion was not idempotent: {resp.json()}")
        return False
    logger.info("✅ Drain is idempotent.")

    resp = await client.get("/card-details")
    if resp.status_code != 403:
        logger.error("❌ Card details visible while unfunded!")
        return False
    logger.info("✅ Card details hidden while unfunded.")
    return True


async def main():
    if len(sys.argv) < 2:
        print(__doc__)
        return
    code = sys.argv[1]
    base_url = sys.argv[2] if len(sys.argv) > 2 else SERVER_URL

    print("=" * 60)
    print("🚀 SpendGate System Integrity")
    print("=" * 60)

    async with httpx.AsyncClient(base_url=base_url, timeout=5.0) as client:
        if not await verify_health(client):
            print("\n❌ ABORTING: Server is down.")
            return

        token = await pair(client, code)
        if token is None:
            print("\n❌ ABORTING: Could not pair.")
            return
        client.headers["Authorization"] = f"Bearer {token}"

        if not await verify_funding_cycle(client):
            print("\n❌ ABORTING: Funding cycle is broken.")
            return

    print("\n" + "=" * 60)
    print("✅✅✅ SYSTEM INTEGRITY VERIFIED successfully!")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
