from fastapi import FastAPI

from evento_sync.api.routes import stats, terms
from evento_sync.core.config import get_settings
from evento_sync.db import init_db

init_db()

app = FastAPI(title=get_settings().app_name)
app.include_router(stats.router)
app.include_router(terms.router)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
