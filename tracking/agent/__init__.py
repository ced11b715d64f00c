"""
Courier-side Location Acquisition Agent.
"""

from tracking.agent.agent import (  # noqa: F401
    AgentRegistry,
    AgentState,
    LocationAgent,
    SessionStatistics,
    TrackingSession,
    compute_statistics,
)
from tracking.agent.sinks import BroadcasterSink, DeliveryFailed, HttpLocationSink  # noqa: F401
from tracking.agent.sources import (  # noqa: F401
    HttpPositionSource,
    Position,
    PositionSource,
    SimulatedPositionSource,
    UnavailablePositionSource,
    detect_source,
)
