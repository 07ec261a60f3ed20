"""Base layout solver protocol.

Defines the interface that all layout solvers must implement.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional

from process_layout.models.layout_graph import AbstractGraphNode


class LayoutSolver(ABC):
    """Abstract base class for layered layout solvers.

    A solver is a pure async function from an abstract hierarchical graph to
    the same graph enriched with parent-relative positions, container sizes
    and edge sections. It never touches the diagram.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Solver name (e.g., 'elk')."""
        ...

    @abstractmethod
    async def layout(
        self,
        graph: AbstractGraphNode,
        options: Optional[Dict[str, str]] = None,
    ) -> AbstractGraphNode:
        """Compute layout for a graph.

        Args:
            graph: Root of the abstract graph; its ``layout_options`` apply
                to the whole run
            options: Extra root options, merged over the graph's own

        Returns:
            Result graph with x/y/width/height and edge sections

        Raises:
            SolverError: If the solver rejects the graph or fails
        """
        ...

    @abstractmethod
    async def is_available(self) -> bool:
        """Check if solver is available (runtime dependencies installed).

        Returns:
            True if solver can be used
        """
        ...
