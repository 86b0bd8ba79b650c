"""
fleetship - Zero-downtime container deployments across a fleet of hosts
"""

__version__ = "0.3.0"

from .core import Deployer, DeployError

__all__ = ["Deployer", "DeployError"]
