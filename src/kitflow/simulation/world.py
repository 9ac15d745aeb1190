from typing import Dict, List, Optional

from kitflow.network.core import Location, RouteTemplate, VehicleType

DEFAULT_HUB_ID = "HUB1"


class World:
    """
    The container for the static reference data of the network.
    Read-only once built.
    """

    def __init__(self):
        self.locations: Dict[str, Location] = {}
        self.vehicle_types: Dict[str, VehicleType] = {}
        self.templates: List[RouteTemplate] = []
        self._hub_id: Optional[str] = None

    def add_location(self, location: Location):
        if location.id in self.locations:
            raise ValueError(f"Location {location.id} already exists")
        self.locations[location.id] = location
        if location.is_hub and self._hub_id is None:
            self._hub_id = location.id

    def add_vehicle_type(self, vehicle_type: VehicleType):
        if vehicle_type.id in self.vehicle_types:
            raise ValueError(f"Vehicle type {vehicle_type.id} already exists")
        self.vehicle_types[vehicle_type.id] = vehicle_type

    def add_template(self, template: RouteTemplate):
        self.templates.append(template)

    @property
    def hub_id(self) -> str:
        if self._hub_id is None:
            raise ValueError("World has no hub location")
        return self._hub_id

    @property
    def hub(self) -> Location:
        return self.locations[self.hub_id]

    def is_hub(self, location_id: str) -> bool:
        return self._hub_id is not None and location_id == self._hub_id

    def get_location(self, location_id: str) -> Optional[Location]:
        return self.locations.get(location_id)

    def get_vehicle_type(self, type_id: str) -> Optional[VehicleType]:
        return self.vehicle_types.get(type_id)

    def route_distance(self, origin_id: str, destination_id: str) -> float:
        for template in self.templates:
            if (
                template.origin_id == origin_id
                and template.destination_id == destination_id
            ):
                return template.distance_km
        return 0.0
