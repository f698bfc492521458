import asyncio
import time
import subprocess
import httpx
import sys
import os
import signal

from sqlalchemy import select

from backend.app.core.jwt import create_token_for_user
from backend.app.db.session import AsyncSessionLocal
from backend.app.models.user import User

BASE_URL = "http://127.0.0.1:8000"
API_PREFIX = "/v1"
SERVER_CMD = [sys.executable, "-m", "uvicorn", "backend.app.main:app", "--host", "127.0.0.1", "--port", "8000"]


def wait_for_server(retries=10, delay=2):
    url = f"{BASE_URL}/health"
    print(f"Waiting for server at {url}...")
    for i in range(retries):
        try:
            resp = httpx.get(url)
            if resp.status_code == 200:
                print("✅ Server is up!")
                return True
        except httpx.ConnectError:
            pass
        except Exception as e:
            print(f"Connect error: {e}")
        time.sleep(delay)
    print("❌ Server failed to start.")
    return False


async def admin_token():
    async with AsyncSessionLocal() as db:
        result = await db.execute(select(User).where(User.username == "admin"))
        admin = result.scalar_one_or_none()
    if admin is None:
        raise Exception("Admin user missing, seeding failed")
    return create_token_for_user(admin)


def list_load_ids(token):
    resp = httpx.get(f"{BASE_URL}{API_PREFIX}/loads", headers={"Authorization": f"Bearer {token}"})
    if resp.status_code != 200:
        raise Exception(f"Listing loads failed: {resp.status_code} {resp.text}")
    return sorted(load["id"] for load in resp.json())


def stop(proc):
    proc.send_signal(signal.SIGTERM)
    proc.wait()


def run_verification():
    # 1. Seed
    print("\n--- [Step 1] Seeding Marketplace ---")
    subprocess.run([sys.executable, "backend/seed_marketplace.py"], check=True)
    token = asyncio.run(admin_token())

    # 2. First run
    print("\n--- [Step 2] Starting Server (Initial) ---")
    proc = subprocess.Popen(
        SERVER_CMD,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        env={**os.environ, "DB_ECHO": "True"}  # Enable echo to see SQL
    )
    try:
        if not wait_for_server():
            server_logs = proc.communicate(timeout=2)
            print("Server Stdout:", server_logs[0].decode())
            print("Server Stderr:", server_logs[1].decode())
            raise Exception("Server start failed")

        before = list_load_ids(token)
        print(f"✅ Loads before restart: {before}")
    finally:
        print("\n--- [Step 3] Stopping Server ---")
        stop(proc)

    time.sleep(2)  # Wait for port release

    # 3. Restart
    print("\n--- [Step 4] Restarting Server (Verification) ---")
    proc2 = subprocess.Popen(SERVER_CMD, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    try:
        if not wait_for_server():
            raise Exception("Server restart failed")

        after = list_load_ids(token)
        if after == before and after:
            print(f"✅ Loads persisted across restart: {after}")
        else:
            print(f"❌ Persistence Issue: {before} before, {after} after")
            raise Exception("Loads changed across restart")
    finally:
        print("\n--- [Step 5] Stopping Server ---")
        stop(proc2)


if __name__ == "__main__":
    run_verification()
