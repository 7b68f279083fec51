"""Panel shapes and topology resolution.

This module maps the device's reported panel layout onto the ordered sequence of
light-emitting panels that a flat colour array is streamed to. It is pure: the
caller fetches the device info and layout resources and passes the decoded JSON in.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping, Sequence

from pyleafstream.exceptions import ConfigMismatch, ProtocolError, UnsupportedVersion
from pyleafstream.protocol import SUPPORTED_EXT_CONTROL_VERSIONS

logger = logging.getLogger(__name__)

MODEL_LIGHT_PANELS = "NL22"
# Light Panels firmware older than this only speaks external control v1
LIGHT_PANELS_V2_FIRMWARE = (3, 2, 0)


class ShapeType(Enum):
    """Panel shape variants, independent of their wire code."""

    TRIANGLE = "triangle"
    RHYTHM = "rhythm"
    SQUARE = "square"
    CONTROL_SQUARE_PRIMARY = "control_square_primary"
    CONTROL_SQUARE_PASSIVE = "control_square_passive"
    POWER_SUPPLY = "power_supply"
    HEXAGON_SHAPES = "hexagon_shapes"
    TRIANGLE_SHAPES = "triangle_shapes"
    MINI_TRIANGLE_SHAPES = "mini_triangle_shapes"
    SHAPES_CONTROLLER = "shapes_controller"
    ELEMENTS_HEXAGONS = "elements_hexagons"
    ELEMENTS_HEXAGONS_CORNER = "elements_hexagons_corner"
    LINES_CONNECTOR = "lines_connector"
    LIGHT_LINES = "light_lines"
    LIGHT_LINES_SINGLE_ZONE = "light_lines_single_zone"
    CONTROLLER_CAP = "controller_cap"
    POWER_CONNECTOR = "power_connector"
    LIGHTSTRIP_4D = "lightstrip_4d"
    SKYLIGHT_PANEL = "skylight_panel"
    SKYLIGHT_CONTROLLER_PRIMARY = "skylight_controller_primary"
    SKYLIGHT_CONTROLLER_PASSIVE = "skylight_controller_passive"
    HD_LIGHT_STRIP = "hd_light_strip"


LIGHT_EMITTING: dict[ShapeType, bool] = {
    ShapeType.TRIANGLE: True,
    ShapeType.RHYTHM: False,
    ShapeType.SQUARE: True,
    ShapeType.CONTROL_SQUARE_PRIMARY: True,
    ShapeType.CONTROL_SQUARE_PASSIVE: True,
    ShapeType.POWER_SUPPLY: False,
    ShapeType.HEXAGON_SHAPES: True,
    ShapeType.TRIANGLE_SHAPES: True,
    ShapeType.MINI_TRIANGLE_SHAPES: True,
    ShapeType.SHAPES_CONTROLLER: False,
    ShapeType.ELEMENTS_HEXAGONS: True,
    ShapeType.ELEMENTS_HEXAGONS_CORNER: True,
    ShapeType.LINES_CONNECTOR: False,
    ShapeType.LIGHT_LINES: True,
    ShapeType.LIGHT_LINES_SINGLE_ZONE: True,
    ShapeType.CONTROLLER_CAP: False,
    ShapeType.POWER_CONNECTOR: False,
    ShapeType.LIGHTSTRIP_4D: True,
    ShapeType.SKYLIGHT_PANEL: True,
    ShapeType.SKYLIGHT_CONTROLLER_PRIMARY: False,
    ShapeType.SKYLIGHT_CONTROLLER_PASSIVE: False,
    ShapeType.HD_LIGHT_STRIP: True,
}

# Wire code -> variants. Code 0 is shared by TRIANGLE and HD_LIGHT_STRIP; the
# first entry is used when nothing else tells them apart.
SHAPE_CODES: dict[int, tuple[ShapeType, ...]] = {
    0: (ShapeType.TRIANGLE, ShapeType.HD_LIGHT_STRIP),
    1: (ShapeType.RHYTHM,),
    2: (ShapeType.SQUARE,),
    3: (ShapeType.CONTROL_SQUARE_PRIMARY,),
    4: (ShapeType.CONTROL_SQUARE_PASSIVE,),
    5: (ShapeType.POWER_SUPPLY,),
    7: (ShapeType.HEXAGON_SHAPES,),
    8: (ShapeType.TRIANGLE_SHAPES,),
    9: (ShapeType.MINI_TRIANGLE_SHAPES,),
    12: (ShapeType.SHAPES_CONTROLLER,),
    14: (ShapeType.ELEMENTS_HEXAGONS,),
    15: (ShapeType.ELEMENTS_HEXAGONS_CORNER,),
    16: (ShapeType.LINES_CONNECTOR,),
    17: (ShapeType.LIGHT_LINES,),
    18: (ShapeType.LIGHT_LINES_SINGLE_ZONE,),
    19: (ShapeType.CONTROLLER_CAP,),
    20: (ShapeType.POWER_CONNECTOR,),
    29: (ShapeType.LIGHTSTRIP_4D,),
    30: (ShapeType.SKYLIGHT_PANEL,),
    31: (ShapeType.SKYLIGHT_CONTROLLER_PRIMARY,),
    32: (ShapeType.SKYLIGHT_CONTROLLER_PASSIVE,),
}

# Models whose layout can only contain one of the variants sharing a code
MODEL_SHAPE_HINTS: dict[str, ShapeType] = {
    MODEL_LIGHT_PANELS: ShapeType.TRIANGLE,
}


def is_light_emitting(shape: ShapeType) -> bool:
    """Check if a panel shape has LEDs that can be streamed to."""
    return LIGHT_EMITTING[shape]


def shape_from_code(code: int, model: str | None = None) -> ShapeType:
    """Resolve a wire shape code to a variant.

    Args:
        code: shapeType value from the layout resource
        model: Device model, used to pick between variants sharing a code

    Returns:
        The resolved ShapeType

    Raises:
        ValueError: If the code is unknown
    """
    try:
        candidates = SHAPE_CODES[code]
    except KeyError:
        raise ValueError(f"Unknown shape type code: {code}") from None

    if len(candidates) == 1:
        return candidates[0]

    hint = MODEL_SHAPE_HINTS.get(model or "")
    if hint in candidates:
        return hint

    logger.debug(
        "Shape code %d is ambiguous (%s) for model %s, using %s",
        code,
        ", ".join(c.name for c in candidates),
        model,
        candidates[0].name,
    )
    return candidates[0]


@dataclass(frozen=True)
class PanelDescriptor:
    """One panel as reported by the device layout."""

    panel_id: int
    shape_type: ShapeType
    x: int
    y: int
    shape_code: int = -1

    @property
    def is_light_emitting(self) -> bool:
        return is_light_emitting(self.shape_type)


@dataclass(frozen=True)
class Topology:
    """Ordered light-emitting panels of one device session."""

    panels: tuple[PanelDescriptor, ...]
    ext_control_version: int
    model: str = ""
    firmware_version: str = ""

    @property
    def panel_led_count(self) -> int:
        return len(self.panels)

    @property
    def panel_ids(self) -> list[int]:
        return [panel.panel_id for panel in self.panels]


def parse_layout(layout: Mapping[str, Any], model: str | None = None) -> list[PanelDescriptor]:
    """Parse the panelLayout/layout resource into panel descriptors.

    Entries with an unknown shape code are skipped with a warning.

    Args:
        layout: Decoded layout JSON ({"numPanels": .., "positionData": [...]})
        model: Device model, used for ambiguous shape codes

    Returns:
        Panel descriptors in device-reported order

    Raises:
        ValueError: If the layout is malformed
    """
    entries = layout.get("positionData", layout.get("panels"))
    if not isinstance(entries, list):
        raise ValueError("Layout has no positionData list")

    panels: list[PanelDescriptor] = []
    for entry in entries:
        if not isinstance(entry, Mapping):
            raise ValueError(f"Malformed layout entry: {entry!r}")
        try:
            panel_id = int(entry["panelId"] if "panelId" in entry else entry["id"])
            code = int(entry["shapeType"])
            x = int(entry["x"])
            y = int(entry["y"])
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Malformed layout entry {entry!r}: {e}") from e

        try:
            shape = shape_from_code(code, model)
        except ValueError:
            logger.warning("Panel %d has unknown shape type %d, skipping", panel_id, code)
            continue

        panels.append(PanelDescriptor(panel_id, shape, x, y, code))
    return panels


def order_panels(
    panels: Iterable[PanelDescriptor],
    top_down: bool | None = None,
    left_right: bool | None = None,
) -> list[PanelDescriptor]:
    """Order panels into stream sequence.

    With neither flag set the device order is kept. Otherwise panels are sorted by
    row (top row first if top_down), then column (leftmost first if left_right),
    then panel id. An unset flag defaults to True.
    """
    panels = list(panels)
    if top_down is None and left_right is None:
        return panels

    y_sign = -1 if top_down is not False else 1
    x_sign = 1 if left_right is not False else -1
    return sorted(panels, key=lambda p: (y_sign * p.y, x_sign * p.x, p.panel_id))


def _version_tuple(version: str) -> tuple[int, ...]:
    return tuple(int(part) for part in re.findall(r"\d+", version))


def ext_control_version_for(device_info: Mapping[str, Any]) -> int:
    """Determine the external control protocol version a device speaks.

    An explicit extControlVersion ("v2" or 2) in the device info wins; otherwise
    Light Panels with old firmware are v1 and everything else is v2.

    Raises:
        ValueError: If an explicit version cannot be read
    """
    explicit = device_info.get("extControlVersion")
    if explicit is not None:
        text = str(explicit).strip().lower().lstrip("v")
        if not text.isdigit():
            raise ValueError(f"Unreadable extControlVersion: {explicit!r}")
        return int(text)

    model = str(device_info.get("model", ""))
    firmware = str(device_info.get("firmwareVersion", ""))
    if model == MODEL_LIGHT_PANELS and _version_tuple(firmware) < LIGHT_PANELS_V2_FIRMWARE:
        return 1
    return 2


def resolve_topology(
    device_info: Mapping[str, Any],
    layout: Mapping[str, Any],
    top_down: bool | None = None,
    left_right: bool | None = None,
    supported_versions: Sequence[int] | frozenset[int] = SUPPORTED_EXT_CONTROL_VERSIONS,
) -> Topology:
    """Resolve device info and layout into the session topology.

    Args:
        device_info: Decoded root resource of the device
        layout: Decoded panelLayout/layout resource
        top_down: Order rows from the top
        left_right: Order columns from the left
        supported_versions: External control versions this client can stream

    Returns:
        Topology of the light-emitting panels

    Raises:
        ProtocolError: If either resource is malformed
        UnsupportedVersion: If the device's streaming protocol is not supported
        ConfigMismatch: If no panel can emit light
    """
    model = str(device_info.get("model", ""))
    firmware = str(device_info.get("firmwareVersion", ""))

    try:
        version = ext_control_version_for(device_info)
    except ValueError as e:
        raise ProtocolError(str(e)) from e
    if version not in supported_versions:
        raise UnsupportedVersion(
            f"Device {model} (firmware {firmware}) uses external control v{version}, "
            f"supported: {', '.join(f'v{v}' for v in sorted(supported_versions))}"
        )

    try:
        panels = parse_layout(layout, model)
    except ValueError as e:
        raise ProtocolError(str(e)) from e

    lit = [panel for panel in panels if panel.is_light_emitting]
    logger.debug("Layout: %d panels, %d light-emitting", len(panels), len(lit))
    if not lit:
        raise ConfigMismatch(f"Device {model} reports no light-emitting panels")

    ordered = order_panels(lit, top_down, left_right)
    return Topology(tuple(ordered), version, model, firmware)
