"""
Request-scoped access to the objects wired up in main.create_app().
"""
from fastapi import Request

from config import Settings
from modules.orchestrator import SimilarityOrchestrator
from modules.similarity import SimilarityOracle
from modules.storage import SearchStorage


def get_storage(request: Request) -> SearchStorage:
    return request.app.state.storage


def get_orchestrator(request: Request) -> SimilarityOrchestrator:
    return request.app.state.orchestrator


def get_oracle(request: Request) -> SimilarityOracle:
    return request.app.state.oracle


def get_settings(request: Request) -> Settings:
    return request.app.state.settings
