"""
MCP Testbed - Resource Providers
==================================
Data source behind the list_resources and update_resource commands.

The command dispatcher only talks to the ResourceProvider interface, so a
real backend can replace the static mock data without touching dispatch.
"""

import copy
from typing import Any, Protocol


class ResourceProvider(Protocol):
    """Interface the command dispatcher depends on."""

    def list_resources(self) -> list[dict[str, Any]]:
        ...

    def update_resource(self, resource_id: Any, data: Any) -> str:
        ...


# Mock inventory served by the test server
STATIC_RESOURCES = [
    {"id": "res1", "name": "Resource 1", "type": "device", "status": "active"},
    {"id": "res2", "name": "Resource 2", "type": "service", "status": "inactive"},
    {"id": "res3", "name": "Resource 3", "type": "device", "status": "maintenance"},
]


class StaticResourceProvider:
    """
    Fixed, read-only resource list.

    update_resource() acknowledges the update without changing anything,
    which is all a protocol test client needs.
    """

    def __init__(self, resources: list[dict[str, Any]] | None = None):
        self._resources = copy.deepcopy(STATIC_RESOURCES if resources is None else resources)

    def list_resources(self) -> list[dict[str, Any]]:
        # Callers get a copy so the served list can't be changed through it
        return copy.deepcopy(self._resources)

    def update_resource(self, resource_id: Any, data: Any) -> str:
        return "Resource updated successfully"
