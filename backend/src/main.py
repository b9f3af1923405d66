# main.py
# Entry point for the HealthPod backend service.
# - Initializes FastAPI app
# - Registers API routes (browser, files, health records, profile)
# - Provides root health-check endpoint
# - Run with: uvicorn backend.src.main:app --reload
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import bp_router, browser_router, file_router, health_router, profile_router
from .config import configure_logging, load_settings

configure_logging(load_settings().log_level)

app = FastAPI(
    title="HealthPod Backend API",
    description="Encrypted personal health records stored in your own pod",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Update this with your frontend URL in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def root():
    return {"status": "healthy", "message": "HealthPod API is running"}


@app.get("/health")
def health_check():
    return {"status": "ok"}


# Register API routes
app.include_router(browser_router)
app.include_router(file_router)
app.include_router(bp_router)
app.include_router(health_router)
app.include_router(profile_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("backend.src.main:app", host="127.0.0.1", port=8000)
