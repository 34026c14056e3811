"""
Device commands for Controller -> Bulb communication.

This module defines the parameter value types of the control protocol and
builder functions that turn typed arguments into Command values. Methods that
exist for both the main and the background light take a ``bg`` flag that
selects the ``bg_`` prefixed wire method.

Reference: Yeelight WiFi Light Inter-Operation Specification
"""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Any

from lanbulb.protocol.codec import Command


class WireEnum(Enum):
    """Enum whose value is sent on the wire verbatim."""

    @classmethod
    def parse(cls, text: str) -> "WireEnum":
        """
        Parse a member from its name or wire value, case-insensitively.

        Raises:
            ValueError: If nothing matches; the message lists valid names.
        """
        wanted = text.strip().lower().replace("-", "_")
        for member in cls:
            if member.name.lower() == wanted or str(member.value).lower() == wanted:
                return member
        valid = ", ".join(member.name.lower() for member in cls)
        raise ValueError(f"Could not parse {cls.__name__} from {text!r} (valid values: {valid})")

    @classmethod
    def names(cls) -> list[str]:
        return [member.name.lower() for member in cls]


class Property(WireEnum):
    """Readable device properties (get_prop / notifications)."""

    POWER = "power"
    BRIGHT = "bright"
    CT = "ct"
    RGB = "rgb"
    HUE = "hue"
    SAT = "sat"
    COLOR_MODE = "color_mode"
    FLOWING = "flowing"
    DELAY_OFF = "delayoff"
    FLOW_PARAMS = "flow_params"
    MUSIC_ON = "music_on"
    NAME = "name"
    BG_POWER = "bg_power"
    BG_FLOWING = "bg_flowing"
    BG_FLOW_PARAMS = "bg_flow_params"
    BG_CT = "bg_ct"
    BG_COLOR_MODE = "bg_lmode"
    BG_BRIGHT = "bg_bright"
    BG_RGB = "bg_rgb"
    BG_HUE = "bg_hue"
    BG_SAT = "bg_sat"
    NIGHT_LIGHT_BRIGHT = "nl_br"
    ACTIVE_MODE = "active_mode"


class Power(WireEnum):
    ON = "on"
    OFF = "off"


class Effect(WireEnum):
    """
    How a change is applied.

    SUDDEN jumps straight to the target value and ignores the duration.
    SMOOTH fades over the given duration (minimum 30 ms).
    """

    SUDDEN = "sudden"
    SMOOTH = "smooth"


class Prop(WireEnum):
    """Adjustable properties for set_adjust."""

    BRIGHT = "bright"
    CT = "ct"
    COLOR = "color"


class SceneClass(WireEnum):
    COLOR = "color"
    HSV = "hsv"
    CT = "ct"
    CF = "cf"
    AUTO_DELAY_OFF = "auto_delay_off"


class Mode(WireEnum):
    """Mode the light switches into when powered on."""

    NORMAL = 0
    CT = 1
    RGB = 2
    HSV = 3
    CF = 4
    NIGHT_LIGHT = 5


class CronType(WireEnum):
    OFF = 0


class CfAction(WireEnum):
    """What the light does after a color flow ends."""

    RECOVER = 0
    STAY = 1
    OFF = 2


class AdjustAction(WireEnum):
    INCREASE = "increase"
    DECREASE = "decrease"
    CIRCLE = "circle"


class MusicAction(WireEnum):
    OFF = 0
    ON = 1


class FlowMode(WireEnum):
    COLOR = 1
    CT = 2
    SLEEP = 7


@dataclass(frozen=True)
class FlowTuple:
    """
    One state change of a color flow.

    Attributes:
        duration_ms: Duration of the change in milliseconds.
        mode: COLOR (value is 0xRRGGBB), CT (value is Kelvin) or SLEEP.
        value: RGB color or color temperature; ignored by SLEEP.
        brightness: 1-100, or -1 to keep the previous brightness.
    """

    duration_ms: int
    mode: FlowMode
    value: int
    brightness: int

    @classmethod
    def rgb(cls, duration_ms: int, rgb: int, brightness: int) -> "FlowTuple":
        return cls(duration_ms, FlowMode.COLOR, rgb, brightness)

    @classmethod
    def ct(cls, duration_ms: int, ct: int, brightness: int) -> "FlowTuple":
        return cls(duration_ms, FlowMode.CT, ct, brightness)

    @classmethod
    def sleep(cls, duration_ms: int) -> "FlowTuple":
        return cls(duration_ms, FlowMode.SLEEP, 0, -1)

    def __str__(self) -> str:
        return f"{self.duration_ms},{self.mode.value},{self.value},{self.brightness}"


@dataclass(frozen=True)
class FlowExpression:
    """Ordered, immutable sequence of FlowTuples played back in order."""

    tuples: tuple[FlowTuple, ...]

    def __init__(self, tuples: Iterable[FlowTuple]) -> None:
        object.__setattr__(self, "tuples", tuple(tuples))

    def __iter__(self) -> Iterator[FlowTuple]:
        return iter(self.tuples)

    def __len__(self) -> int:
        return len(self.tuples)

    def serialize(self) -> str:
        """Comma-joined form sent as a single string parameter."""
        return ",".join(str(t) for t in self.tuples)

    @classmethod
    def parse(cls, text: str) -> "FlowExpression":
        """
        Parse the comma-separated form ``duration,mode,value,brightness,...``.

        The mode may be given by number (1, 2, 7) or by name (color, ct, sleep).

        Raises:
            ValueError: On a field count that is not a multiple of four or on
                an unparseable field.
        """
        fields = [f.strip() for f in text.split(",") if f.strip()]
        if not fields or len(fields) % 4:
            raise ValueError(f"Flow expression needs groups of 4 values, got {len(fields)}")

        tuples = []
        for i in range(0, len(fields), 4):
            duration, mode, value, brightness = fields[i : i + 4]
            tuples.append(
                FlowTuple(
                    duration_ms=int(duration),
                    mode=FlowMode.parse(mode),  # type: ignore[arg-type]
                    value=int(value),
                    brightness=int(brightness),
                )
            )
        return cls(tuples)


def _method(name: str, bg: bool) -> str:
    return f"bg_{name}" if bg else name


def _wire(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, FlowExpression):
        return value.serialize()
    return value


def build_command(method: str, *params: Any) -> Command:
    """Build a command, converting enums and flow expressions to wire values."""
    return Command(method, tuple(_wire(p) for p in params))


def build_get_prop(*properties: Property | str) -> Command:
    return build_command("get_prop", *properties)


def build_set_power(
    power: Power,
    effect: Effect = Effect.SMOOTH,
    duration_ms: int = 500,
    mode: Mode = Mode.NORMAL,
    *,
    bg: bool = False,
) -> Command:
    return build_command(_method("set_power", bg), power, effect, duration_ms, mode)


def build_toggle(*, bg: bool = False) -> Command:
    return build_command(_method("toggle", bg))


def build_dev_toggle() -> Command:
    return build_command("dev_toggle")


def build_set_ct_abx(ct: int, effect: Effect, duration_ms: int, *, bg: bool = False) -> Command:
    return build_command(_method("set_ct_abx", bg), ct, effect, duration_ms)


def build_set_rgb(rgb: int, effect: Effect, duration_ms: int, *, bg: bool = False) -> Command:
    return build_command(_method("set_rgb", bg), rgb, effect, duration_ms)


def build_set_hsv(hue: int, sat: int, effect: Effect, duration_ms: int, *, bg: bool = False) -> Command:
    return build_command(_method("set_hsv", bg), hue, sat, effect, duration_ms)


def build_set_bright(brightness: int, effect: Effect, duration_ms: int, *, bg: bool = False) -> Command:
    return build_command(_method("set_bright", bg), brightness, effect, duration_ms)


def build_set_scene(
    scene_class: SceneClass,
    val1: int,
    val2: int,
    val3: int | FlowExpression,
    *,
    bg: bool = False,
) -> Command:
    # SceneClass.CF takes (count, CfAction value, flow expression).
    return build_command(_method("set_scene", bg), scene_class, val1, val2, val3)


def build_start_cf(count: int, action: CfAction, flow: FlowExpression, *, bg: bool = False) -> Command:
    """
    Start a color flow.

    Args:
        count: Number of state changes to run; 0 loops forever.
        action: What to do when the flow stops.
        flow: The flow expression.
    """
    return build_command(_method("start_cf", bg), count, action, flow)


def build_stop_cf(*, bg: bool = False) -> Command:
    return build_command(_method("stop_cf", bg))


def build_set_adjust(action: AdjustAction, prop: Prop, *, bg: bool = False) -> Command:
    # Prop.COLOR only accepts AdjustAction.CIRCLE; the device rejects the rest.
    return build_command(_method("set_adjust", bg), action, prop)


def build_adjust(prop: Prop, percentage: int, duration_ms: int, *, bg: bool = False) -> Command:
    """Build adjust_bright / adjust_ct / adjust_color (percentage -100..100)."""
    return build_command(_method(f"adjust_{prop.value}", bg), percentage, duration_ms)


def build_set_default(*, bg: bool = False) -> Command:
    return build_command(_method("set_default", bg))


def build_set_name(name: str) -> Command:
    return build_command("set_name", name)


def build_set_music(action: MusicAction, host: str, port: int) -> Command:
    return build_command("set_music", action, host, port)


def build_cron_add(cron_type: CronType, minutes: int) -> Command:
    return build_command("cron_add", cron_type, minutes)


def build_cron_del(cron_type: CronType) -> Command:
    return build_command("cron_del", cron_type)
