"""HTTP service: job store, request models, and the FastAPI app."""
