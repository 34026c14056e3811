"""
Named lighting presets.

Static presets are sent with set_scene (color, hsv or ct class); animated
ones with start_cf. Values follow the scenes of the vendor app.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from lanbulb.protocol.commands import CfAction, FlowExpression, FlowTuple, SceneClass

if TYPE_CHECKING:
    from lanbulb.session.session import Session

RED = 0xFF_00_00
GREEN = 0x00_FF_00
BLUE = 0x00_00_FF


@dataclass(frozen=True)
class ScenePreset:
    scene_class: SceneClass
    val1: int
    val2: int
    val3: int = 0


@dataclass(frozen=True)
class FlowPreset:
    flow: FlowExpression
    count: int = 0
    action: CfAction = CfAction.STAY


Preset = ScenePreset | FlowPreset


def rgb(color: int, brightness: int) -> ScenePreset:
    return ScenePreset(SceneClass.COLOR, color, brightness)


def hsv(hue: int, sat: int, brightness: int) -> ScenePreset:
    return ScenePreset(SceneClass.HSV, hue, sat, brightness)


def ct(kelvin: int, brightness: int) -> ScenePreset:
    return ScenePreset(SceneClass.CT, kelvin, brightness)


def disco(bpm: int) -> FlowPreset:
    duration = 1000 // bpm
    colors = (0xFF_00_00, 0x80_FF_00, 0x00_FF_FF, 0x80_00_FF)
    tuples = []
    for color in colors:
        tuples.append(FlowTuple.rgb(duration, color, 100))
        tuples.append(FlowTuple.rgb(duration, color, 1))
    return FlowPreset(FlowExpression(tuples))


def temp(a: int, b: int, brightness: int) -> FlowPreset:
    duration = 40_000
    return FlowPreset(FlowExpression([FlowTuple.ct(duration, a, brightness), FlowTuple.ct(duration, b, brightness)]))


def pulse(color: int, brightness: int, duration_ms: int) -> FlowPreset:
    flow = FlowExpression([FlowTuple.rgb(duration_ms, color, brightness), FlowTuple.rgb(duration_ms, color, 1)])
    return FlowPreset(flow, count=2, action=CfAction.RECOVER)


def police(brightness: int) -> FlowPreset:
    return FlowPreset(FlowExpression([FlowTuple.rgb(300, RED, brightness), FlowTuple.rgb(300, BLUE, brightness)]))


def police2(brightness: int) -> FlowPreset:
    tuples = []
    for color in (RED, BLUE):
        tuples += [
            FlowTuple.rgb(300, color, brightness),
            FlowTuple.rgb(300, color, 1),
            FlowTuple.rgb(300, color, brightness),
            FlowTuple.sleep(300),
        ]
    return FlowPreset(FlowExpression(tuples))


def candle() -> FlowPreset:
    steps = [(800, 50), (800, 30), (1200, 80), (800, 60), (1200, 90), (2400, 50), (1200, 80), (800, 60), (400, 70)]
    return FlowPreset(FlowExpression(FlowTuple.ct(duration, 2700, bright) for duration, bright in steps))


def romantic() -> FlowPreset:
    return FlowPreset(
        FlowExpression([FlowTuple.rgb(4000, 0x59_15_6D, 1), FlowTuple.rgb(4000, 0x66_14_2A, 1)])
    )


def birthday() -> FlowPreset:
    colors = (0xDC_50_19, 0xDC_78_1E, 0xAA_32_14)
    return FlowPreset(FlowExpression(FlowTuple.rgb(1996, color, 80) for color in colors))


def blink(duration_ms: int, times: int) -> FlowPreset:
    """Blink cold white ``times`` times, then restore the previous state."""
    tuples = []
    for _ in range(times):
        tuples += [FlowTuple.ct(duration_ms, 5000, 100), FlowTuple.ct(duration_ms, 5000, 1)]
    flow = FlowExpression(tuples)
    return FlowPreset(flow, count=len(flow), action=CfAction.RECOVER)


PRESETS: dict[str, Preset] = {
    "candle": candle(),
    "reading": ct(3500, 100),
    "night_reading": ct(4000, 40),
    "cosy_home": ct(2700, 80),
    "romantic": romantic(),
    "birthday": birthday(),
    "date_night": hsv(24, 100, 50),
    "teatime": ct(3000, 50),
    "pc_mode": ct(2700, 30),
    "concentration": ct(5000, 100),
    "movie": hsv(240, 60, 50),
    "night": hsv(36, 100, 1),
    "notify": blink(300, 3),
    "notify2": blink(200, 2),
    "pulse_red": pulse(RED, 100, 250),
    "pulse_green": pulse(GREEN, 100, 250),
    "pulse_blue": pulse(BLUE, 100, 250),
    "red": rgb(RED, 100),
    "green": rgb(GREEN, 100),
    "blue": rgb(BLUE, 100),
    "police": police(100),
    "police2": police2(100),
    "disco": disco(120),
    "temp": temp(2600, 5000, 100),
}


def get_preset(name: str) -> Preset:
    """Look up a preset by name (case-insensitive, '-' or '_')."""
    key = name.strip().lower().replace("-", "_")
    try:
        return PRESETS[key]
    except KeyError:
        raise ValueError(f"Unknown preset {name!r} (valid: {', '.join(PRESETS)})") from None


async def apply_preset(session: "Session", name: str) -> Any:
    """Send a preset to the device."""
    preset = get_preset(name)
    if isinstance(preset, FlowPreset):
        return await session.start_cf(preset.count, preset.action, preset.flow)
    return await session.set_scene(preset.scene_class, preset.val1, preset.val2, preset.val3)
