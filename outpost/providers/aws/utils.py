"""AWS-specific utility functions for outpost."""

from __future__ import annotations

from typing import Any


def extract_instance_from_response(response: dict[str, Any]) -> dict[str, Any]:
    """Return the first instance of a ``describe_instances`` response.

    Raises
    ------
    ValueError
        If the response carries no reservation or no instance
    """
    reservations = response.get("Reservations") or []
    if not reservations:
        raise ValueError("No reservations in response")

    instances = reservations[0].get("Instances") or []
    if not instances:
        raise ValueError("No instances in reservation")

    return instances[0]
