"""xrdeploy - build, sign and upload an Android VR application."""

__version__ = "0.1.0"
