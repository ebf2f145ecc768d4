"""MedPortal backend: portal role resolution, feature gating and referral rewards."""

__version__ = "0.1.0"
