"""HTTP service surface: FastAPI application and Prometheus metrics."""
