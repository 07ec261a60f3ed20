"""
Configuration and Feature Flags for the Layout Pipeline

This module provides two layers of configuration:

1. Feature flags controlled via environment variables, for toggling optional
   pipeline behaviour without code changes.
2. ``LayoutSettings``: every spacing, tolerance and offset used by the
   post-layout correction passes. An instance is passed explicitly through
   the pipeline so passes can be exercised at several tolerance settings.

Usage:
    from process_layout.config.settings import is_enabled, load_settings

    settings = load_settings()
    if is_enabled('boundary_proxy_edges'):
        ...

Environment Variables:
    LAYOUT_DEBUG=true/false                - Emit per-step timings at INFO level
    LAYOUT_BOUNDARY_PROXY_EDGES=true/false - Proxy edges for boundary-marker flows
    LAYOUT_BACK_EDGE_PRIORITY=true/false   - Low solver priority on loop-back edges
    LAYOUT_NODE_SPACING, LAYOUT_LAYER_SPACING, LAYOUT_SAME_ROW_THRESHOLD,
    LAYOUT_ORTHO_SNAP_TOLERANCE            - Numeric overrides for LayoutSettings
"""

import logging
import os
from typing import Dict, Tuple

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# Feature flags with environment variable overrides
FEATURE_FLAGS: Dict[str, bool] = {
    'layout_debug': os.getenv('LAYOUT_DEBUG', 'false').lower() in ('1', 'true'),
    'boundary_proxy_edges': os.getenv('LAYOUT_BOUNDARY_PROXY_EDGES', 'true').lower() == 'true',
    'back_edge_priority': os.getenv('LAYOUT_BACK_EDGE_PRIORITY', 'true').lower() == 'true',
}


def is_enabled(flag: str) -> bool:
    """
    Check if a feature flag is enabled.

    Args:
        flag: Feature flag name (e.g., 'boundary_proxy_edges')

    Returns:
        True if flag is enabled, False otherwise

    Raises:
        KeyError: If flag name is not recognized
    """
    if flag not in FEATURE_FLAGS:
        available = ', '.join(FEATURE_FLAGS.keys())
        raise KeyError(
            f"Unknown feature flag: '{flag}'. "
            f"Available flags: {available}"
        )

    return FEATURE_FLAGS[flag]


def get_all_flags() -> Dict[str, bool]:
    """
    Get all feature flags and their current state.

    Returns:
        Dictionary of flag names to boolean values
    """
    return FEATURE_FLAGS.copy()


def set_flag(flag: str, enabled: bool) -> None:
    """
    Programmatically set a feature flag (for testing only).

    Args:
        flag: Feature flag name
        enabled: True to enable, False to disable

    Warning:
        This is for testing only. In production, use environment variables.
    """
    if flag not in FEATURE_FLAGS:
        available = ', '.join(FEATURE_FLAGS.keys())
        raise KeyError(
            f"Unknown feature flag: '{flag}'. "
            f"Available flags: {available}"
        )

    FEATURE_FLAGS[flag] = enabled


class LayoutSettings(BaseModel):
    """Spacing, tolerance and offset values for the layout pipeline (px).

    Defaults are tuned to match the spacing of hand-drawn process diagrams
    (~50-60px edge-to-edge gaps between elements).
    """

    # Solver spacing
    node_spacing: float = Field(default=50, description="Gap between siblings in the same rank")
    layer_spacing: float = Field(default=60, description="Gap between ranks")

    # Rank alignment
    same_row_threshold: float = Field(
        default=20, description="Max vertical-center gap for two nodes to share a row"
    )
    subprocess_row_threshold: float = Field(
        default=40, description="Row threshold used inside expanded sub-processes"
    )

    # Movement guards
    movement_threshold: float = Field(
        default=0.5, description="Dead-zone below which a move is skipped"
    )
    resize_threshold: float = Field(
        default=5, description="Size difference below which a resize is skipped"
    )

    # Boundary markers
    marker_proximity_tolerance: float = Field(
        default=60, description="Margin around the host before a marker counts as stranded"
    )
    marker_attach_factor: float = Field(
        default=2 / 3, description="Fraction along the host's bottom edge for re-attachment"
    )

    # Edge routing
    segment_snap_tolerance: float = Field(
        default=8, description="Per-axis noise snapped to zero in solver sections"
    )
    ortho_snap_tolerance: float = Field(
        default=15, description="Max smaller delta for a segment to be snapped orthogonal"
    )
    straight_route_tolerance: float = Field(
        default=2, description="Axis delta below which a fallback route is a straight segment"
    )
    endpoint_snap_tolerance: float = Field(
        default=15, description="Max gap for snapping straight routes to element borders"
    )
    subset_same_row_threshold: float = Field(
        default=15, description="Same-row tolerance when rebuilding subset neighbor edges"
    )

    # Endpoint repair
    disconnect_threshold: float = Field(
        default=20, description="Gap from the element before a route endpoint counts as detached"
    )
    centre_snap_tolerance: float = Field(
        default=15, description="Max offset for snapping a route endpoint onto the element center line"
    )
    repair_same_row_tolerance: float = Field(
        default=5, description="Center gap below which a repaired route is a straight segment"
    )
    loopback_margin: float = Field(
        default=15, description="Clearance of a repaired loop-back route around both elements"
    )

    # Lanes
    lane_label_band: float = Field(default=30, description="Pool label band left of the lanes")
    lane_padding: float = Field(default=30, description="Gap between a lane's edge and its content")
    min_lane_height: float = Field(default=250, description="Minimum height of a horizontal lane")
    min_lane_width: float = Field(default=250, description="Minimum width of a vertical lane")

    # Secondary decorations
    decoration_above_offset: float = Field(default=80, description="Gap above the linked node")
    decoration_below_offset: float = Field(default=80, description="Gap below the linked node")
    decoration_padding: float = Field(default=20, description="Gap between decorations")
    decoration_search_margin: float = Field(
        default=200, description="How far past the flow's right edge a decoration may shift"
    )
    group_padding: float = Field(default=20, description="Padding of a group around its members")

    # Origins
    origin_offset: Tuple[float, float] = Field(
        default=(180, 80), description="Where the solver's (0, 0) lands for a full layout"
    )
    subset_start_offset: Tuple[float, float] = Field(
        default=(20, 50), description="Offset inside a shared container for subset layout"
    )

    @property
    def layer_threshold(self) -> float:
        """Max horizontal-center gap for two nodes to share a rank."""
        return self.node_spacing / 2


_ENV_OVERRIDES = {
    'LAYOUT_NODE_SPACING': 'node_spacing',
    'LAYOUT_LAYER_SPACING': 'layer_spacing',
    'LAYOUT_SAME_ROW_THRESHOLD': 'same_row_threshold',
    'LAYOUT_ORTHO_SNAP_TOLERANCE': 'ortho_snap_tolerance',
}


def load_settings() -> LayoutSettings:
    """
    Build LayoutSettings from defaults plus LAYOUT_* environment overrides.

    Returns:
        LayoutSettings instance

    Raises:
        ValueError: If an override is not a number
    """
    overrides: Dict[str, float] = {}
    for env_name, field_name in _ENV_OVERRIDES.items():
        raw = os.getenv(env_name)
        if raw is None:
            continue
        try:
            overrides[field_name] = float(raw)
        except ValueError:
            raise ValueError(f"{env_name} must be a number, got '{raw}'")
        logger.debug(f"Settings override from {env_name}: {field_name}={raw}")

    return LayoutSettings(**overrides)
