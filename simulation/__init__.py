"""Single-drone simulation — kinematics, anomalies and telemetry snapshots.

Package layout:
  state.py      — AgentState / AnomalyState / TelemetrySnapshot + anomaly profiles
  history.py    — HistoryBuffer (newest-first ring of snapshots)
  engine.py     — SimulationEngine (tick logic, anomaly state machine)
  simulator.py  — DroneSimulator (ticker + channel orchestration); import it
                  directly, it depends on the comms package
"""

from .engine import SimulationEngine
from .history import HistoryBuffer
from .state import AgentState, AnomalyMode, AnomalyState, TelemetrySnapshot

__all__ = [
    "SimulationEngine",
    "HistoryBuffer",
    "AgentState",
    "AnomalyMode",
    "AnomalyState",
    "TelemetrySnapshot",
]
