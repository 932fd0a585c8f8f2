from __future__ import annotations

from fastapi import Request

from bucket_manager.services.connectivity import ConnectivityValidator
from bucket_manager.services.gateway import ObjectStoreGateway
from bucket_manager.services.uploads import UploadOrchestrator


def get_gateway(request: Request) -> ObjectStoreGateway:
    return request.app.state.gateway


def get_validator(request: Request) -> ConnectivityValidator:
    return request.app.state.validator


def get_orchestrator(request: Request) -> UploadOrchestrator:
    return request.app.state.uploads
