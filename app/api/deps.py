from fastapi import Request
from app.core.config import Settings
from app.services.upload_service import UploadService


def get_upload_service(request: Request) -> UploadService:
    return request.app.state.upload_service


def get_settings(request: Request) -> Settings:
    return request.app.state.settings
