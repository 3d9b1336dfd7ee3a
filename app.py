"""Restaurant Dish Configurator - API server.

Single entry point for the configurator service:
- Creates the database schema (SQLite by default, PostgreSQL via DATABASE_URL)
- Seeds the demo menu and users into an empty database (SEED_ON_STARTUP)
- Serves the REST API with uvicorn

Run with: python app.py
"""

import uvicorn

from configurator.api.app import create_app
from configurator.utils.config import config
from configurator.utils.logger import logger


app = create_app()


if __name__ == "__main__":
    logger.info(f"Starting Restaurant Dish Configurator on {config.HOST}:{config.PORT}")
    logger.info(f"Database: {config.DATABASE_URL.split('@')[-1]}")
    logger.info(f"API docs available at: http://{config.HOST}:{config.PORT}/docs")
    uvicorn.run(app, host=config.HOST, port=config.PORT, log_level="info")
