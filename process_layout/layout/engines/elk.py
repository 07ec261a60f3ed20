"""ELK layout solver via elkjs.

Provides layered layout with orthogonal edge routing for process diagrams.
Uses a persistent Node.js worker for performance.

Architecture:
    - Persistent Node.js worker (not per-call spawn)
    - stdin/stdout JSON protocol with request IDs
    - ELK-native coordinates (top-left origin, px, relative to the parent
      compound node)
"""

import asyncio
import atexit
import glob
import json
import logging
import os
import subprocess
import threading
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from process_layout.layout.constants import ELK_LAYOUT_OPTIONS
from process_layout.layout.engines.base import LayoutSolver
from process_layout.layout.errors import SolverError
from process_layout.models.layout_graph import (
    AbstractGraphEdge,
    AbstractGraphNode,
    EdgeSection,
)

logger = logging.getLogger(__name__)

# Directory holding package.json / node_modules with elkjs
PROJECT_ROOT = Path(__file__).parent.parent.parent.parent


class ELKWorkerManager:
    """Manages a persistent ELK worker process.

    Provides thread-safe access to a long-running Node.js process
    that handles ELK layout requests via stdin/stdout JSON protocol.
    """

    def __init__(
        self,
        node_path: str,
        worker_script: Path,
        timeout: int = 30,
    ):
        """Initialize worker manager.

        Args:
            node_path: Path to Node.js executable
            worker_script: Path to elk_worker.js
            timeout: Timeout in seconds for layout requests
        """
        self._node_path = node_path
        self._worker_script = worker_script
        self._timeout = timeout
        self._process: Optional[subprocess.Popen] = None
        self._lock = threading.Lock()
        # Serializes request/response pairs on the shared pipe
        self._io_lock = threading.Lock()

    def _start_worker(self) -> None:
        """Start the worker process if not already running."""
        with self._lock:
            if self._process is not None and self._process.poll() is None:
                return  # Already running

            logger.debug("Starting ELK worker process")
            self._process = subprocess.Popen(
                [self._node_path, str(self._worker_script)],
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                bufsize=1,  # Line buffered
                cwd=PROJECT_ROOT,
            )
            logger.info(f"ELK worker started (PID: {self._process.pid})")

    def _ensure_worker(self) -> subprocess.Popen:
        """Ensure worker is running and return it."""
        self._start_worker()
        if self._process is None or self._process.poll() is not None:
            raise SolverError("ELK worker failed to start")
        return self._process

    async def request(self, graph: Dict[str, Any]) -> Dict[str, Any]:
        """Send layout request and wait for response.

        Args:
            graph: ELK graph JSON

        Returns:
            ELK layout result

        Raises:
            SolverError: If layout fails or times out
        """
        request_id = str(uuid.uuid4())
        request = {"id": request_id, "graph": graph}

        def send_and_receive():
            with self._io_lock:
                process = self._ensure_worker()

                request_line = json.dumps(request) + "\n"
                try:
                    process.stdin.write(request_line)
                    process.stdin.flush()
                except (BrokenPipeError, OSError) as e:
                    # Worker died, try to restart
                    logger.warning(f"ELK worker pipe broken: {e}, restarting")
                    self._process = None
                    process = self._ensure_worker()
                    process.stdin.write(request_line)
                    process.stdin.flush()

                # Read response (blocking)
                response_line = process.stdout.readline()
                if not response_line:
                    raise SolverError("ELK worker closed unexpectedly")

                try:
                    return json.loads(response_line)
                except json.JSONDecodeError as e:
                    raise SolverError(f"ELK worker sent invalid JSON: {e}") from e

        # Run in executor to not block event loop
        loop = asyncio.get_running_loop()
        try:
            response = await asyncio.wait_for(
                loop.run_in_executor(None, send_and_receive),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"ELK request {request_id} timed out after {self._timeout}s")
            # Kill worker on timeout; next request restarts it
            self.shutdown()
            raise SolverError(f"ELK layout timed out after {self._timeout}s")

        if "error" in response:
            raise SolverError(f"ELK layout failed: {response['error']}")

        if response.get("id") != request_id:
            logger.warning(f"Response ID mismatch: expected {request_id}, got {response.get('id')}")

        return response.get("result", {})

    def shutdown(self) -> None:
        """Shutdown the worker process."""
        with self._lock:
            if self._process is not None:
                logger.debug("Shutting down ELK worker")
                try:
                    self._process.stdin.close()
                    self._process.terminate()
                    self._process.wait(timeout=5)
                except (OSError, subprocess.SubprocessError) as e:
                    logger.warning(f"Error shutting down ELK worker: {e}")
                    try:
                        self._process.kill()
                    except OSError as kill_error:
                        logger.warning(f"Could not kill ELK worker: {kill_error}")
                self._process = None

    @property
    def is_running(self) -> bool:
        """Check if worker is currently running."""
        with self._lock:
            return self._process is not None and self._process.poll() is None


# Global worker manager instance (shared across ELKLayoutEngine instances)
_worker_manager: Optional[ELKWorkerManager] = None
_worker_lock = threading.Lock()


def _cleanup_worker():
    """Cleanup worker on process exit."""
    global _worker_manager
    if _worker_manager is not None:
        _worker_manager.shutdown()


atexit.register(_cleanup_worker)


class ELKLayoutEngine(LayoutSolver):
    """ELK layered solver via elkjs Node.js subprocess.

    Uses stdin/stdout JSON protocol with a persistent worker process.
    The worker is shared across all ELKLayoutEngine instances for efficiency.
    """

    def __init__(
        self,
        node_path: Optional[str] = None,
        worker_script: Optional[Path] = None,
        timeout: int = 30,
    ):
        """Initialize ELK layout engine.

        Args:
            node_path: Path to Node.js executable (auto-detect if None)
            worker_script: Path to elk_worker.js (use bundled if None)
            timeout: Timeout in seconds for layout operations

        Raises:
            SolverError: If no Node.js executable can be found
        """
        self._node_path = node_path or self._find_node()
        self._worker_script = worker_script or self._default_worker_script()
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "elk"

    def _find_node(self) -> str:
        """Find Node.js executable."""
        for path in ["node", "/usr/bin/node", "/usr/local/bin/node"]:
            try:
                result = subprocess.run(
                    [path, "--version"],
                    capture_output=True,
                    text=True,
                    timeout=5,
                )
                if result.returncode == 0:
                    return path
            except (subprocess.SubprocessError, FileNotFoundError):
                continue

        # Try nvm path
        nvm_node = os.path.expanduser("~/.nvm/versions/node/*/bin/node")
        nvm_paths = glob.glob(nvm_node)
        if nvm_paths:
            return sorted(nvm_paths)[-1]  # Latest version

        raise SolverError("Node.js not found. Install Node.js to use ELK layout.")

    def _default_worker_script(self) -> Path:
        """Get path to bundled elk_worker.js."""
        return Path(__file__).parent.parent / "elk_worker.js"

    def _get_worker(self) -> ELKWorkerManager:
        """Get or create the shared worker manager."""
        global _worker_manager
        with _worker_lock:
            if _worker_manager is None:
                _worker_manager = ELKWorkerManager(
                    self._node_path,
                    self._worker_script,
                    self._timeout,
                )
            return _worker_manager

    async def is_available(self) -> bool:
        """Check if Node.js and the elkjs module are both present."""
        try:
            result = subprocess.run(
                [self._node_path, "--version"],
                capture_output=True,
                text=True,
                timeout=5,
            )
            if result.returncode != 0:
                return False

            check_script = "try { require('elkjs'); console.log('ok'); } catch(e) { console.log('missing'); }"
            result = subprocess.run(
                [self._node_path, "-e", check_script],
                capture_output=True,
                text=True,
                timeout=5,
                cwd=PROJECT_ROOT,
            )
            return result.stdout.strip() == "ok"

        except (OSError, subprocess.SubprocessError) as e:
            logger.warning(f"ELK availability check failed: {e}")
            return False

    async def layout(
        self,
        graph: AbstractGraphNode,
        options: Optional[Dict[str, str]] = None,
    ) -> AbstractGraphNode:
        """Compute layout using ELK.

        Args:
            graph: Abstract graph root
            options: ELK options merged over the root's layout options

        Returns:
            Result graph with positions, sizes and edge sections
        """
        root_options = {**ELK_LAYOUT_OPTIONS, **graph.layout_options, **(options or {})}

        elk_graph = self._graph_to_elk(graph)
        elk_graph["layoutOptions"] = root_options

        worker = self._get_worker()
        elk_result = await worker.request(elk_graph)

        return self._elk_to_graph(elk_result)

    def _graph_to_elk(self, node: AbstractGraphNode) -> Dict[str, Any]:
        """Convert an abstract graph node (recursively) to ELK JSON."""
        elk_node: Dict[str, Any] = {
            "id": node.id,
            "width": node.width,
            "height": node.height,
        }
        if node.layout_options:
            elk_node["layoutOptions"] = dict(node.layout_options)
        if node.children:
            elk_node["children"] = [self._graph_to_elk(child) for child in node.children]
        if node.edges:
            elk_edges = []
            for edge in node.edges:
                elk_edge: Dict[str, Any] = {
                    "id": edge.id,
                    "sources": list(edge.sources),
                    "targets": list(edge.targets),
                }
                if edge.layout_options:
                    elk_edge["layoutOptions"] = dict(edge.layout_options)
                elk_edges.append(elk_edge)
            elk_node["edges"] = elk_edges
        return elk_node

    def _elk_to_graph(self, elk_node: Dict[str, Any]) -> AbstractGraphNode:
        """Convert an ELK result node (recursively) to an abstract graph node."""
        edges: List[AbstractGraphEdge] = []
        for edge in elk_node.get("edges", []):
            sections = [
                EdgeSection(
                    id=section.get("id"),
                    start_point=(section["startPoint"]["x"], section["startPoint"]["y"]),
                    end_point=(section["endPoint"]["x"], section["endPoint"]["y"]),
                    bend_points=[
                        (bp["x"], bp["y"])
                        for bp in section.get("bendPoints", [])
                    ],
                )
                for section in edge.get("sections", [])
            ]
            edges.append(
                AbstractGraphEdge(
                    id=edge["id"],
                    sources=edge.get("sources", []),
                    targets=edge.get("targets", []),
                    layout_options=edge.get("layoutOptions", {}),
                    sections=sections,
                )
            )

        return AbstractGraphNode(
            id=elk_node["id"],
            width=elk_node.get("width", 0),
            height=elk_node.get("height", 0),
            x=elk_node.get("x"),
            y=elk_node.get("y"),
            children=[self._elk_to_graph(child) for child in elk_node.get("children", [])],
            edges=edges,
            layout_options={
                key: str(value) for key, value in elk_node.get("layoutOptions", {}).items()
            },
        )

    def shutdown(self) -> None:
        """Shutdown the ELK worker (for cleanup)."""
        global _worker_manager
        with _worker_lock:
            if _worker_manager is not None:
                _worker_manager.shutdown()
                _worker_manager = None
