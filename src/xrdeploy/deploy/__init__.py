"""
Store deployment for xrdeploy.

This module uploads signed APKs to a store release channel.
"""

from .deployer import (
    DeployError,
    DeploymentDispatcher,
    DeploymentRequest,
    DeploymentTarget,
    DeployResult,
)

__all__ = [
    "DeployError",
    "DeploymentDispatcher",
    "DeploymentRequest",
    "DeploymentTarget",
    "DeployResult",
]
