"""Shared route dependencies. Pipeline objects live on app.state."""

from fastapi import Request

from job_discovery.engines.sources.registry import AdapterRegistry
from job_discovery.queue.service import QueueService


def get_registry(request: Request) -> AdapterRegistry:
    return request.app.state.registry


def get_queue(request: Request) -> QueueService:
    return request.app.state.queue
