"""Application server provisioning for UI Harness."""

from .models import ServerHandle
from .server import ServerProvisioner

__all__ = ["ServerHandle", "ServerProvisioner"]
