"""Run the event lifecycle service with uvicorn.

Example: EVENTS_ENVIRONMENT=development EVENTS_SEED_DEMO_DATA=true python run.py
"""

import uvicorn

from app.config import load_settings

if __name__ == "__main__":
    settings = load_settings()
    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=not settings.is_production,
        log_level=settings.log_level.lower(),
    )
