"""GitHub authentication."""

from .device_flow import DeviceFlowAuthenticator

__all__ = ["DeviceFlowAuthenticator"]
