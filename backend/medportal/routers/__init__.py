"""Routers exposing the portal API under ``/api``."""
