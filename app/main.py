from fastapi import FastAPI

from app.api.auth import router as auth_router
from app.api.subscriptions import router as subscriptions_router
from app.api.users import router as users_router
from app.core.config import settings
from app.core.logging import setup_logging

setup_logging(settings.log_level)

app = FastAPI(title="Fanmora", version="0.1.0")

app.include_router(auth_router, prefix="/auth", tags=["auth"])
app.include_router(users_router, prefix="/users")
app.include_router(subscriptions_router)


@app.get("/health")
def health():
    return {"status": "ok"}
