# routes.py
from fastapi import FastAPI
from controller.upload_controller import upload_router


def register_routes(app: FastAPI) -> None:
    """Register & Access control controllers here."""
    app.include_router(upload_router)
