"""
Messaging Automation Engine API entry point
"""
import uvicorn
from dotenv import load_dotenv

from automation_engine.api import create_app
from automation_engine.config import EngineSettings, setup_logging


# Load .env before reading settings
load_dotenv()

settings = EngineSettings.from_env(dotenv=False)
setup_logging(settings.log_level)

app = create_app(settings=settings)


if __name__ == "__main__":
    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower()
    )
