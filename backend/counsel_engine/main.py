"""
Counsel Engine - FastAPI Application

Main entry point for the counsel request dispatch service.

Flow:
- User creates a request → Dispatcher broadcasts it to eligible counselors
- Counselors race to claim it → Arbiter lets exactly one win
- Nobody on duty → BookingQueue holds a dated appointment for later claim
- LifecycleManager completes or cancels, releasing counselor capacity
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .routers import counsel_router, counselors_router, scheduler_router
from .database import init_db


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    yield

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Counsel Engine",
    description="""
    Counsel Engine - Legal Help Request Dispatch

    Matches a user's request for legal help to exactly one on-duty counselor
    in their region.

    ## Flow
    1. **Dispatch**: request is broadcast to every eligible counselor
    2. **Claim**: first valid claim wins, everyone else gets 409
    3. **Queue**: with nobody on duty, a dated appointment waits for a claim
    4. **Close**: complete or cancel, releasing the counselor's capacity

    ## Key Principles
    - A claim is a single guarded write, never read-then-write
    - Expiry is enforced at read and claim time, not by a timer
    - Counselor capacity moves only on claim and close
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(counsel_router)
app.include_router(counselors_router)
app.include_router(scheduler_router)


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Counsel Engine",
        "version": "1.0.0",
        "description": "Legal help request dispatch",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# For running with: python -m counsel_engine.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
