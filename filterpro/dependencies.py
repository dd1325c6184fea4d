# filterpro/dependencies.py
"""
FastAPI dependency providers. Services are built once in the application
lifespan and kept on app.state; routes receive them through Depends.
"""
from fastapi import Request
from motor.motor_asyncio import AsyncIOMotorDatabase

from filterpro.services.resolver import DependencyResolver
from filterpro.services.scheduler import SyncScheduler
from filterpro.services.sync import SyncEngine
from filterpro.store import Store


def get_db(request: Request) -> AsyncIOMotorDatabase:
    return request.app.state.db


def get_store(request: Request) -> Store:
    return request.app.state.store


def get_sync_engine(request: Request) -> SyncEngine:
    return request.app.state.sync_engine


def get_scheduler(request: Request) -> SyncScheduler:
    return request.app.state.scheduler


def get_resolver(request: Request) -> DependencyResolver:
    return request.app.state.resolver
