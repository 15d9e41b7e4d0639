from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import asyncio
import logging

from database import Base, engine, get_settings
from api import duels, battles, reconciler

settings = get_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: create tables, start the timeout reconciler
    Base.metadata.create_all(bind=engine)
    task = None
    if settings.reconciler_enabled:
        task = asyncio.create_task(reconciler.reconciler.run_forever())
    yield
    # Shutdown: let the current sweep finish, then stop
    if task is not None:
        reconciler.reconciler.stop()
        await task


app = FastAPI(
    title="SKATE Duels API",
    description="Turn-based SKATE duels and clip battles with server-side timeout resolution",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure this properly in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(duels.router)
app.include_router(battles.router)
app.include_router(reconciler.router)


@app.get("/")
def root():
    return {"message": "SKATE Duels API", "status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
