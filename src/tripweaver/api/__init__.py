"""API package for the itinerary generation service."""

from tripweaver.api.app import app, create_app
from tripweaver.api.components import AppComponents, build_components
from tripweaver.api.routes import router

__all__ = ["AppComponents", "app", "build_components", "create_app", "router"]
