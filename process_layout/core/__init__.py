"""Diagram model collaborator contract and in-memory implementation."""

from .diagram_model import (
    ConnectionNotFoundError,
    DiagramModel,
    InMemoryDiagram,
    NodeNotFoundError,
)

__all__ = [
    "DiagramModel",
    "InMemoryDiagram",
    "NodeNotFoundError",
    "ConnectionNotFoundError",
]
