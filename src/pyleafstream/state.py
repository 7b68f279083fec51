"""Capture and replay of the device's visual state around a streaming session."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping

from pyleafstream.exceptions import NanoleafError, ProtocolError

if TYPE_CHECKING:
    from pyleafstream.control import ControlPlaneClient

logger = logging.getLogger(__name__)

COLOR_MODE_HS = "hs"
COLOR_MODE_CT = "ct"
COLOR_MODE_EFFECT = "effect"

# Pseudo effects the device reports but that cannot be selected again
DYNAMIC_EFFECTS = frozenset({"*Dynamic*", "*ExtControl*", "*Solid*"})


@dataclass(frozen=True)
class DeviceStateSnapshot:
    """Power, colour and effect state captured before streaming starts."""

    on: bool
    color_mode: str
    hue: int
    sat: int
    ct: int
    brightness: int
    effect: str = ""
    is_dyn_effect: bool = False

    @classmethod
    def from_state(cls, state: Mapping[str, Any], effect: str = "") -> DeviceStateSnapshot:
        """Build a snapshot from the decoded state resource.

        Args:
            state: Decoded /state JSON
            effect: Selected effect name, if the colour mode is "effect"

        Raises:
            ValueError: If a field is missing or malformed
        """

        def value(key: str) -> Any:
            field = state[key]
            return field["value"] if isinstance(field, Mapping) else field

        try:
            return cls(
                on=bool(value("on")),
                color_mode=str(state.get("colorMode", "")),
                hue=int(value("hue")),
                sat=int(value("sat")),
                ct=int(value("ct")),
                brightness=int(value("brightness")),
                effect=effect,
                is_dyn_effect=effect in DYNAMIC_EFFECTS,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Malformed device state {dict(state)!r}: {e}") from e


def prepare_restore(snapshot: DeviceStateSnapshot) -> list[tuple[str, str, dict[str, Any]]]:
    """Prepare the requests that put a device back into the captured state.

    Colour attributes come first, then brightness, and power last so a device that
    was off never shows an intermediate colour.

    Returns:
        List of (description, resource, body) tuples in order
    """
    steps: list[tuple[str, str, dict[str, Any]]] = []

    if snapshot.color_mode == COLOR_MODE_HS:
        steps.append(
            (
                f"Restore hue {snapshot.hue}, saturation {snapshot.sat}",
                "state",
                {"hue": {"value": snapshot.hue}, "sat": {"value": snapshot.sat}},
            )
        )
    elif snapshot.color_mode == COLOR_MODE_CT:
        steps.append(
            (f"Restore colour temperature {snapshot.ct}", "state", {"ct": {"value": snapshot.ct}})
        )
    elif snapshot.color_mode == COLOR_MODE_EFFECT:
        if snapshot.effect and not snapshot.is_dyn_effect:
            steps.append(
                (f"Select effect {snapshot.effect!r}", "effects", {"select": snapshot.effect})
            )
        else:
            logger.debug("Effect %r cannot be selected again, skipping", snapshot.effect)

    steps.append(
        (
            f"Restore brightness {snapshot.brightness}",
            "state",
            {"brightness": {"value": snapshot.brightness}},
        )
    )
    steps.append(
        (
            f"Restore power {'on' if snapshot.on else 'off'}",
            "state",
            {"on": {"value": snapshot.on}},
        )
    )
    return steps


def store_state(control: ControlPlaneClient) -> DeviceStateSnapshot:
    """Read the device's current state.

    Must run before the mode switch; afterwards the device reports the external
    control pseudo effect.

    Raises:
        ProtocolError: If the state resource is malformed
        NetworkError, AuthError: From the control plane
    """
    state = control.get_state()
    effect = ""
    if state.get("colorMode") == COLOR_MODE_EFFECT:
        effect = control.get_selected_effect()

    try:
        snapshot = DeviceStateSnapshot.from_state(state, effect)
    except ValueError as e:
        raise ProtocolError(str(e)) from e
    logger.debug("Stored device state: %s", snapshot)
    return snapshot


def restore_state(control: ControlPlaneClient, snapshot: DeviceStateSnapshot) -> None:
    """Replay a snapshot onto the device.

    Every step is attempted even if an earlier one fails, so power is still
    restored when the effect cannot be selected.

    Raises:
        NanoleafError: The first failure, after all steps were attempted
    """
    errors: list[NanoleafError] = []
    for description, resource, body in prepare_restore(snapshot):
        logger.debug("%s", description)
        try:
            control.put(resource, body)
        except NanoleafError as e:
            logger.warning("%s failed: %s", description, e)
            errors.append(e)
    if errors:
        raise errors[0]
    logger.info("Device state restored")
