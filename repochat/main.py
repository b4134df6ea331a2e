"""Main FastAPI application."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from repochat import __version__
from repochat.api.endpoints import router
from repochat.utils.logging import setup_logging

setup_logging()

# Create FastAPI application
app = FastAPI(
    title="repochat",
    description=(
        "A conversational assistant that answers questions about a single GitHub repository, "
        "streaming its answers and the repository tools it uses."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    tags_metadata=[
        {
            "name": "Conversation",
            "description": (
                "Repository-bound conversations: streamed turns, history, replay and approval of tool calls."
            ),
        },
        {
            "name": "Repository",
            "description": "Checks against the GitHub API.",
        },
        {
            "name": "Health",
            "description": "Service health monitoring and status checks.",
        },
    ],
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("repochat.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
