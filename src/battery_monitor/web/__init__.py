"""
Web API module for battery-monitor.

Provides HTTP server with:
- JSON API endpoints for the latest diagnostic record and the dataset
- Health, status and Prometheus metrics endpoints
"""

from .web_server import WebServer

__all__ = ['WebServer']
