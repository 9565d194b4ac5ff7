"""Entry point for the telehealth booking server"""
import logging
import os

from dotenv import load_dotenv

# .env must be loaded before Settings is first read
load_dotenv()

from telehealth_booking.config import get_settings  # noqa: E402

settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

from telehealth_booking.app_factory import create_app  # noqa: E402

app = create_app()

if __name__ == "__main__":
    import uvicorn
    port = int(os.environ.get("PORT", 8080))
    logger.info(f"Booking server listening on port {port} ({settings.ENVIRONMENT})")
    uvicorn.run(app, host="0.0.0.0", port=port)
