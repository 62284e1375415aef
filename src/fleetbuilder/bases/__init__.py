"""
Fleet Builder Bases Module

Concrete implementations of the collaborators declared in protocols.py.

- DockerEngine: EngineProtocol on top of python-on-whales (docker buildx)
- HttpResourceApi: ResourceApiProtocol on top of requests

Usage:
    from fleetbuilder.bases import DockerEngine, EngineConnection
"""

from .engine import DockerEngine, EngineConnection
from .remote import HttpResourceApi

__all__ = [
    'DockerEngine',
    'EngineConnection',
    'HttpResourceApi',
]
