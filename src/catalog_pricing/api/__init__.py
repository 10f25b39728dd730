"""API subpackage - FastAPI application and routers."""
