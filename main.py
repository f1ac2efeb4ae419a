"""
Main entrypoint: GrantShield screening API under uvicorn.

Env: CRS_BASE_URL, CRS_USERNAME, CRS_PASSWORD, DATABASE_URL or DB_PATH,
API_HOST, API_PORT, LOG_LEVEL (see backend_grantshield.config).

Equivalent: uvicorn backend_grantshield.api_server.server:app --host 0.0.0.0 --port 8000
"""

# Configure structured JSON logging before other imports that may log
from backend_grantshield.grantshield_logging import get_logger

logger = get_logger("main")


def main() -> None:
    """Run the FastAPI server in the main thread."""
    import uvicorn

    from backend_grantshield.api_server.server import app
    from backend_grantshield.config import get_settings

    settings = get_settings()
    logger.info("main_server_starting", host=settings.api_host, port=settings.api_port)
    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_level=settings.log_level)


if __name__ == "__main__":
    main()
