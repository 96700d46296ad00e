"""SQLModel tables used by the database adapter."""

from deskvfs.models.nodes import VFSNode, VFSNodeBase

__all__ = ["VFSNode", "VFSNodeBase"]
