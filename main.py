# main.py
import logging
import uvicorn
from bakery_pos.app import create_app
from bakery_pos.config import Config, setup_logging

def main():
    # Setup logging
    setup_logging()
    logger = logging.getLogger(__name__)

    try:
        app = create_app()
        logger.info(f"Starting POS API on {Config.HOST}:{Config.PORT}...")
        uvicorn.run(app, host=Config.HOST, port=Config.PORT, log_config=None)
    except Exception as e:
        logger.error(f"Error starting POS API: {e}", exc_info=True)
        raise

if __name__ == "__main__":
    main()
