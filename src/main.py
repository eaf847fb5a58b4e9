import logging
import os

import uvicorn
from dotenv import load_dotenv

load_dotenv()

from shared.config import settings  # noqa: E402
from api.server import app  # noqa: E402

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("main")

if __name__ == "__main__":
    port = int(os.environ.get("PORT", settings.PORT))
    logger.info(f"Starting Spatial Optimization Engine API on port {port}...")
    uvicorn.run(app, host="0.0.0.0", port=port)
