"""Solver option presets and fixed layout constants."""

from typing import Dict

# Layered preset for process diagrams
ELK_LAYOUT_OPTIONS: Dict[str, str] = {
    # Algorithm
    "elk.algorithm": "layered",
    "elk.direction": "RIGHT",
    # Spacing (px)
    "elk.spacing.nodeNode": "50",
    "elk.layered.spacing.nodeNodeBetweenLayers": "60",
    "elk.spacing.edgeNode": "15",
    # Edge routing
    "elk.edgeRouting": "ORTHOGONAL",
    # Layering strategy
    "elk.layered.nodePlacement.strategy": "NETWORK_SIMPLEX",
    "elk.layered.nodePlacement.favorStraightEdges": "true",
    "elk.layered.crossingMinimization.strategy": "LAYER_SWEEP",
    "elk.layered.cycleBreaking.strategy": "DEPTH_FIRST",
    # Disconnected fragments laid out side by side
    "elk.separateConnectedComponents": "true",
    "elk.spacing.componentComponent": "50",
}

ELK_CROSSING_THOROUGHNESS = "30"

# Edge priorities
ELK_HIGH_PRIORITY = "10"
ELK_BACK_EDGE_PRIORITY = "0"

# Compound node padding; pools reserve a wider left band for their label
CONTAINER_PADDING = "[top=60,left=40,bottom=60,right=50]"
PARTICIPANT_PADDING = "[top=80,left=50,bottom=80,right=40]"
# Pools with lanes also clear the lane label band
PARTICIPANT_WITH_LANES_PADDING = "[top=80,left=80,bottom=80,right=40]"

# Spacing presets: (node spacing, layer spacing)
COMPACTNESS_PRESETS = {
    "compact": (40, 50),
    "spacious": (80, 100),
}

# Fallback sizes for nodes with unknown geometry
DEFAULT_TASK_WIDTH = 100
DEFAULT_TASK_HEIGHT = 80
DEFAULT_CONTAINER_WIDTH = 300
DEFAULT_CONTAINER_HEIGHT = 200
DEFAULT_DECORATION_WIDTH = 100
DEFAULT_DECORATION_HEIGHT = 30

BOUNDARY_PROXY_PREFIX = "__boundary_proxy__"
ROOT_NODE_ID = "root"

POSITIVE_LABEL_PATTERN = (
    r"^(yes|approved|ok|true|success|valid|accept|accepted|completed|done|correct|passed)$"
)
