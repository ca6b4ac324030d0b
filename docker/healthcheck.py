#!/usr/bin/env python3
import sys
import asyncio
import httpx
from src.core.services.db_service import get_db_service
from src.utils.logging import logger

async def _database_ok() -> bool:
    db = get_db_service()
    await db.open()
    try:
        return await db.check_health()
    finally:
        await db.close()

def check_database():
    """Check database connectivity."""
    try:
        return asyncio.run(_database_ok())
    except Exception as e:
        logger.error(f"Database healthcheck failed: {e}")
        return False

def check_service(port: int, path: str = "/docs") -> bool:
    """Check that the API answers on the given port."""
    url = f"http://localhost:{port}/{path.lstrip('/')}"
    try:
        response = httpx.get(url, timeout=5)
        return response.status_code == 200
    except httpx.HTTPError as e:
        logger.error(f"Service healthcheck failed for port {port}: {e}")
        return False

def main():
    """Run all health checks."""
    checks = {
        "API": check_service(8000),
        "Database": check_database(),
    }

    for service, status in checks.items():
        logger.info(f"{service} health check: {'PASSED' if status else 'FAILED'}")

    if all(checks.values()):
        sys.exit(0)
    failed_services = [svc for svc, status in checks.items() if not status]
    logger.error(f"Health check failed for services: {', '.join(failed_services)}")
    sys.exit(1)

if __name__ == "__main__":
    main()
