from fastapi import Request

from deckflow.config import Settings
from deckflow.db.base import Database
from deckflow.services.scheduler import SchedulingOracle
from deckflow.services.session_registry import SessionRegistry


def get_db(request: Request) -> Database:
    return request.app.state.db


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_sessions(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def get_oracle(request: Request) -> SchedulingOracle:
    return request.app.state.oracle
