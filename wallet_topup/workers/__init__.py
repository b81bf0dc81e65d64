"""Background workers."""
from .polling_supervisor import PollingSupervisor

__all__ = ["PollingSupervisor"]
