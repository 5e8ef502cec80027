"""Routers package."""

from . import (
    health,
    profile,
    earn,
    campaigns,
    visits,
    billing,
    admin,
    analytics,
)
