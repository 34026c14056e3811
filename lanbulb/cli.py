"""
Command-line client.

Builds the argument parser and maps each sub-command onto Session
operations. Targets are resolved here: an IP address connects directly, a
device name is looked up through discovery, and "all" runs the command on
every discovered device.
"""

import argparse
import asyncio
import contextlib
import ipaddress
import logging
import os
import sys
from collections.abc import Callable
from dataclasses import replace
from pathlib import Path
from typing import Any, TextIO

from lanbulb import __version__
from lanbulb.config import ClientConfig
from lanbulb.errors import LanBulbError
from lanbulb.presets import PRESETS, apply_preset
from lanbulb.protocol.commands import (
    AdjustAction,
    CfAction,
    CronType,
    Effect,
    FlowExpression,
    Mode,
    MusicAction,
    Power,
    Prop,
    Property,
    SceneClass,
    WireEnum,
)
from lanbulb.protocol.discovery import DiscoveredDevice, discover
from lanbulb.session.session import Result, Session

logger = logging.getLogger(__name__)

ENV_ADDRESS = "LANBULB_ADDR"
ENV_PORT = "LANBULB_PORT"
ENV_TIMEOUT = "LANBULB_TIMEOUT"

ALL_DEVICES = "all"


class CliError(LanBulbError):
    """Usage problem detected after argument parsing (e.g. device not found)."""

    pass


def _enum(enum_cls: type[WireEnum]) -> Callable[[str], WireEnum]:
    def parse(text: str) -> WireEnum:
        try:
            return enum_cls.parse(text)
        except ValueError as e:
            raise argparse.ArgumentTypeError(str(e)) from e

    parse.__name__ = enum_cls.__name__
    return parse


def _number(text: str) -> int:
    """Integer in any base Python understands (``0xff0000``, ``16711680``)."""
    try:
        return int(text, 0)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid number: {text!r}") from e


def _flow(text: str) -> FlowExpression:
    try:
        return FlowExpression.parse(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def _env_int(name: str) -> int | None:
    value = os.environ.get(name)
    return int(value) if value else None


def _env_float(name: str) -> float | None:
    value = os.environ.get(name)
    return float(value) if value else None


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for all sub-commands."""
    parser = argparse.ArgumentParser(
        prog="lanbulb",
        description="Control LAN smart bulbs from the command line",
    )
    parser.add_argument(
        "-a",
        "--address",
        default=os.environ.get(ENV_ADDRESS),
        help=f"Device IP, device name, or '{ALL_DEVICES}' (env {ENV_ADDRESS})",
    )
    parser.add_argument("-p", "--port", type=int, default=_env_int(ENV_PORT), help=f"Control port (env {ENV_PORT})")
    parser.add_argument(
        "-t",
        "--timeout",
        type=float,
        default=_env_float(ENV_TIMEOUT),
        help=f"Connect/discovery timeout in seconds (env {ENV_TIMEOUT})",
    )
    parser.add_argument("-c", "--config", type=Path, help="TOML config file overlaid on the defaults")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose (debug) logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    bg = argparse.ArgumentParser(add_help=False)
    bg.add_argument("--bg", action="store_true", help="Perform action on background light")

    transition = argparse.ArgumentParser(add_help=False)
    transition.add_argument("-e", "--effect", type=_enum(Effect), default=Effect.SMOOTH, help="sudden or smooth")
    transition.add_argument("-d", "--duration", type=int, default=500, help="Transition in ms (default: 500)")

    sub = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    p = sub.add_parser("get", help="Get properties")
    p.add_argument("properties", nargs="+", type=_enum(Property), metavar="PROPERTY", help=", ".join(Property.names()))

    p = sub.add_parser("toggle", help="Toggle light")
    group = p.add_mutually_exclusive_group()
    group.add_argument("--bg", action="store_true", help="Perform action on background light")
    group.add_argument("--dev", action="store_true", help="Perform action on all lights of device")

    for name, text in (("on", "Turn on light"), ("off", "Turn off light")):
        p = sub.add_parser(name, help=text, parents=[bg, transition])
        p.add_argument("-m", "--mode", type=_enum(Mode), default=Mode.NORMAL, help=", ".join(Mode.names()))

    p = sub.add_parser("timer", help="Start timer")
    p.add_argument("minutes", type=int)
    sub.add_parser("timer-clear", help="Clear current timer")
    sub.add_parser("timer-get", help="Get remaining minutes for timer")

    p = sub.add_parser("set", help="Set values")
    props = p.add_subparsers(dest="property", required=True, metavar="PROPERTY")
    pp = props.add_parser("power", parents=[bg, transition])
    pp.add_argument("power", type=_enum(Power))
    pp.add_argument("mode", type=_enum(Mode), nargs="?", default=Mode.NORMAL)
    pp = props.add_parser("ct", parents=[bg, transition])
    pp.add_argument("color_temperature", type=int)
    pp = props.add_parser("rgb", parents=[bg, transition])
    pp.add_argument("rgb_value", type=_number)
    pp = props.add_parser("hsv", parents=[bg, transition])
    pp.add_argument("hue", type=int)
    pp.add_argument("sat", type=int, nargs="?", default=100)
    pp = props.add_parser("bright", parents=[bg, transition])
    pp.add_argument("brightness", type=int)
    pp = props.add_parser("name")
    pp.add_argument("name")
    pp = props.add_parser("scene", parents=[bg])
    pp.add_argument("scene_class", type=_enum(SceneClass), metavar="CLASS")
    pp.add_argument("val1", type=_number)
    pp.add_argument("val2", type=_number, nargs="?", default=100)
    pp.add_argument("val3", type=_number, nargs="?", default=100)
    props.add_parser("default", parents=[bg])

    p = sub.add_parser("flow", help="Start color flow", parents=[bg])
    p.add_argument("expression", type=_flow, help="duration,mode,value,brightness[,...]")
    p.add_argument("count", type=int, nargs="?", default=0)
    p.add_argument("action", type=_enum(CfAction), nargs="?", default=CfAction.RECOVER)
    sub.add_parser("flow-stop", help="Stop color flow", parents=[bg])

    p = sub.add_parser("adjust", help="Adjust properties (bright/ct/color) (increase/decrease/circle)", parents=[bg])
    p.add_argument("prop", type=_enum(Prop), metavar="PROPERTY")
    p.add_argument("action", type=_enum(AdjustAction))

    p = sub.add_parser("adjust-percent", help="Adjust properties (bright/ct/color) by percentage (-100~100)", parents=[bg])
    p.add_argument("prop", type=_enum(Prop), metavar="PROPERTY")
    p.add_argument("percent", type=int)
    p.add_argument("duration", type=int, nargs="?", default=500)

    p = sub.add_parser("music-connect", help="Ask the device to connect to a music TCP stream")
    p.add_argument("host")
    p.add_argument("music_port", type=int, metavar="PORT")
    sub.add_parser("music-stop", help="Stop music mode")

    p = sub.add_parser("music", help="Switch to music mode locally and cycle colors without rate limit")
    p.add_argument("colors", nargs="+", type=_number, metavar="RGB")
    p.add_argument("--host", help="Local address the device connects back to")
    p.add_argument("--listen-port", type=int, help="Local listener port (default: ephemeral)")
    p.add_argument("--interval", type=float, default=0.3, help="Seconds between colors (default: 0.3)")
    p.add_argument("--cycles", type=int, default=10, help="Times to run through the colors (default: 10)")

    p = sub.add_parser("preset", help="Apply a preset")
    p.add_argument("preset", choices=sorted(PRESETS), metavar="PRESET")

    sub.add_parser("listen", help="Listen to notifications from the device")

    p = sub.add_parser("discover", help="Discover devices on the local network")
    p.add_argument("--duration", type=float, help="Discovery window in seconds")

    return parser


def effective_config(args: argparse.Namespace, config: ClientConfig) -> ClientConfig:
    """Apply command-line overrides on top of the loaded configuration."""
    changes: dict[str, Any] = {}
    if args.port is not None:
        changes["port"] = args.port
    if args.timeout is not None:
        changes["connect_timeout"] = args.timeout
        changes["discovery_timeout"] = args.timeout
    if getattr(args, "duration", None) is not None and args.command == "discover":
        changes["discovery_timeout"] = args.duration
    return replace(config, **changes)


async def run_command(args: argparse.Namespace, session: Session, config: ClientConfig, out: TextIO = sys.stdout) -> Result:
    """Execute one parsed sub-command on a session."""
    command = args.command
    bg = getattr(args, "bg", False)

    if command == "get":
        return await session.get_prop(*args.properties)
    if command == "toggle":
        if args.dev:
            return await session.dev_toggle()
        return await session.toggle(bg=bg)
    if command in ("on", "off"):
        power = Power.ON if command == "on" else Power.OFF
        return await session.set_power(power, args.effect, args.duration, args.mode, bg=bg)
    if command == "timer":
        return await session.cron_add(CronType.OFF, args.minutes)
    if command == "timer-clear":
        return await session.cron_del(CronType.OFF)
    if command == "timer-get":
        return await session.cron_get(CronType.OFF)
    if command == "set":
        return await _run_set(args, session)
    if command == "flow":
        return await session.start_cf(args.count, args.action, args.expression, bg=bg)
    if command == "flow-stop":
        return await session.stop_cf(bg=bg)
    if command == "adjust":
        return await session.set_adjust(args.action, args.prop, bg=bg)
    if command == "adjust-percent":
        adjust = {
            Prop.BRIGHT: session.adjust_bright,
            Prop.CT: session.adjust_ct,
            Prop.COLOR: session.adjust_color,
        }[args.prop]
        return await adjust(args.percent, args.duration, bg=bg)
    if command == "music-connect":
        return await session.set_music(MusicAction.ON, args.host, args.music_port)
    if command == "music-stop":
        return await session.stop_music()
    if command == "music":
        return await _run_music(args, session, config)
    if command == "preset":
        return await apply_preset(session, args.preset)
    if command == "listen":
        async with session.notifications() as subscription:
            async for notification in subscription:
                for key, value in notification.params.items():
                    print(f"{key} {value}", file=out, flush=True)
        return None

    raise CliError(f"Unknown command {command!r}")


async def _run_set(args: argparse.Namespace, session: Session) -> Result:
    prop = args.property
    bg = getattr(args, "bg", False)

    if prop == "power":
        return await session.set_power(args.power, args.effect, args.duration, args.mode, bg=bg)
    if prop == "ct":
        return await session.set_ct_abx(args.color_temperature, args.effect, args.duration, bg=bg)
    if prop == "rgb":
        return await session.set_rgb(args.rgb_value, args.effect, args.duration, bg=bg)
    if prop == "hsv":
        return await session.set_hsv(args.hue, args.sat, args.effect, args.duration, bg=bg)
    if prop == "bright":
        return await session.set_bright(args.brightness, args.effect, args.duration, bg=bg)
    if prop == "name":
        return await session.set_name(args.name)
    if prop == "scene":
        return await session.set_scene(args.scene_class, args.val1, args.val2, args.val3, bg=bg)
    if prop == "default":
        return await session.set_default(bg=bg)

    raise CliError(f"Unknown property {prop!r}")


async def _run_music(args: argparse.Namespace, session: Session, config: ClientConfig) -> Result:
    manager = await session.start_music(
        args.host or config.music_host or None,
        args.listen_port if args.listen_port is not None else config.music_port,
        bind_host=config.music_bind_host,
        accept_timeout=config.music_accept_timeout,
    )
    logger.info("Music mode established via %s:%d", *manager.advertised)

    # The device neither answers nor notifies in music mode.
    session.expect_responses = False
    for _ in range(args.cycles):
        for color in args.colors:
            await session.set_rgb(color, Effect.SUDDEN, 0)
            await asyncio.sleep(args.interval)
    return None


def print_result(result: Result, out: TextIO = sys.stdout) -> None:
    """Print result values other than the plain "ok" acknowledgement."""
    for value in result or []:
        if value != "ok":
            print(value, file=out)


def _is_ip(address: str) -> bool:
    try:
        ipaddress.ip_address(address)
    except ValueError:
        return False
    return True


async def _run_on_device(
    args: argparse.Namespace,
    device: DiscoveredDevice,
    config: ClientConfig,
    out: TextIO,
) -> None:
    session = await device.connect(**config.session_kwargs())
    async with session:
        print_result(await run_command(args, session, config, out), out)


async def run(args: argparse.Namespace, config: ClientConfig, out: TextIO = sys.stdout) -> None:
    """Resolve the target device(s) and run the parsed command."""
    if args.command == "discover":
        async with contextlib.aclosing(discover(config.discovery_timeout)) as devices:
            async for device in devices:
                print(device, file=out, flush=True)
        return

    address = args.address
    if not address:
        raise CliError(f"No address specified (use -a or {ENV_ADDRESS})")

    if address.lower() == ALL_DEVICES:
        print("Discovering devices...", file=out, flush=True)
        async with contextlib.aclosing(discover(config.discovery_timeout)) as devices:
            async for device in devices:
                print(device, file=out, flush=True)
                await _run_on_device(args, device, config, out)
        return

    if _is_ip(address):
        session = await Session.connect(address, config.port, **config.session_kwargs())
        async with session:
            print_result(await run_command(args, session, config, out), out)
        return

    print("Discovering devices...", file=out, flush=True)
    async with contextlib.aclosing(discover(config.discovery_timeout)) as devices:
        async for device in devices:
            print(device, file=out, flush=True)
            if device.name == address:
                await _run_on_device(args, device, config, out)
                return

    raise CliError(f"Device {address!r} not found")
