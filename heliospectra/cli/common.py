"""Shared CLI helpers: flags, environment overrides and logging."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Mapping, Optional

from ..config import AgentConfig, SUPPORTED_TRANSPORTS, load_config
from ..errors import ConfigError
from ..timeutil import parse_duration

LOG_FORMAT = "[heliospectra] %(asctime)s %(filename)s:%(lineno)d: %(message)s"
LOG_DATE_FORMAT = "%Y/%m/%d %H:%M:%S"

CHANNEL_HELP = """\
examples:
  collect metrics from 192.168.1.3 every 10 minutes
    %(prog)s -dummy 192.168.1.3 2>> GC03-error.log

  run conditions on 192.168.1.3
    %(prog)s -conditions GC03-conditions.csv 192.168.1.3 2>> GC03-error.log

channels are numbered sequentially in the conditions file (channel-1, channel-2, ...):
  s7:   400nm 420nm 450nm 530nm 630nm 660nm 735nm
  s10:  370nm 400nm 420nm 450nm 530nm 620nm 660nm 735nm 850nm 6500k
  dyna: 380nm 400nm 420nm 450nm 530nm 620nm 660nm 735nm 5700K

every flag can also be set through the environment variable named in its help.
"""


def configure_logging(verbose: bool = False) -> None:
    """Route all log records to stderr with the agent's stable prefix."""

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        stream=sys.stderr,
        force=True,
    )


def env_flag(environ: Mapping[str, str], name: str) -> Optional[bool]:
    """``True`` for ``true``/``1``, ``False`` for any other non-empty value, ``None`` if unset."""

    value = environ.get(name, "").strip().lower()
    if not value:
        return None
    return value in {"true", "1"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Collect metrics from and run conditions on a Heliospectra light.",
        epilog=CHANNEL_HELP,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("address", nargs="?", help="Fixture host or URL (env ADDRESS).")
    parser.add_argument(
        "-no-metrics", "--no-metrics", dest="no_metrics", action="store_true", default=None,
        help="Don't send metrics to telegraf (env NO_METRICS).",
    )
    parser.add_argument(
        "-dummy", "--dummy", dest="dummy", action="store_true", default=None,
        help="Don't control the light, only collect metrics (env DUMMY).",
    )
    parser.add_argument(
        "-loop", "--loop", dest="loop", action="store_true", default=None,
        help="Loop over the first day of the conditions file (env LOOP).",
    )
    parser.add_argument("-host-tag", "--host-tag", dest="host_tag", help="Host tag for measurements (env HOST_TAG).")
    parser.add_argument("-group-tag", "--group-tag", dest="group_tag", help="Group tag for measurements (env GROUP_TAG).")
    parser.add_argument("-did-tag", "--did-tag", dest="did_tag", help="Deliverable id tag (env DID_TAG).")
    parser.add_argument("-conditions", "--conditions", dest="conditions", help="Conditions file to run (env CONDITIONS_FILE).")
    parser.add_argument(
        "-interval", "--interval", dest="interval",
        help="Metrics interval such as 10m; 0s reads one metric and exits (env INTERVAL).",
    )
    parser.add_argument("-multiplier", "--multiplier", dest="multiplier", help="Channel value multiplier (env MULTIPLIER).")
    parser.add_argument(
        "-transport", "--transport", dest="transport", choices=sorted(SUPPORTED_TRANSPORTS),
        help="Fixture control surface (env TRANSPORT, default http).",
    )
    parser.add_argument("-port", "--port", dest="port", type=int, help="Telnet shell port (env TELNET_PORT).")
    parser.add_argument("-config", "--config", dest="config", help="JSON, TOML or YAML config file (env CONFIG_FILE).")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Log debug output.")
    return parser


def _first(*candidates: Any) -> Any:
    for candidate in candidates:
        if candidate is not None and candidate != "":
            return candidate
    return None


def resolve_config(args: argparse.Namespace, environ: Mapping[str, str]) -> AgentConfig:
    """Merge config file, environment and flags (in increasing precedence) and validate."""

    config_path = _first(getattr(args, "config", None), environ.get("CONFIG_FILE"))
    config = load_config(Path(config_path)) if config_path else AgentConfig()
    device, metrics, schedule = config.device, config.metrics, config.schedule

    address = _first(args.address, environ.get("ADDRESS"), device.address)
    transport = _first(args.transport, environ.get("TRANSPORT"), device.transport)
    port = _first(args.port, environ.get("TELNET_PORT"), device.port)
    try:
        port = int(port)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Couldn't parse telnet port {port!r}") from exc
    device = device.with_overrides(address=address or "", transport=transport, port=port)

    no_metrics = _first(args.no_metrics, env_flag(environ, "NO_METRICS"))
    metrics = metrics.with_overrides(
        enabled=metrics.enabled if no_metrics is None else not no_metrics,
        telegraf_host=_first(environ.get("TELEGRAF_HOST"), metrics.telegraf_host),
        host_tag=_first(args.host_tag, environ.get("HOST_TAG"), metrics.host_tag, environ.get("NAME")) or "",
        group_tag=_first(args.group_tag, environ.get("GROUP_TAG"), metrics.group_tag) or "",
        did_tag=_first(args.did_tag, environ.get("DID_TAG"), metrics.did_tag) or "",
    )

    dummy = _first(args.dummy, env_flag(environ, "DUMMY"), schedule.dummy)
    loop = _first(args.loop, env_flag(environ, "LOOP"), schedule.loop_first_day)
    conditions = _first(args.conditions, environ.get("CONDITIONS_FILE"), schedule.conditions_path)

    interval_s = schedule.interval_s
    interval_text = _first(args.interval, environ.get("INTERVAL"))
    if interval_text is not None:
        try:
            interval_s = parse_duration(interval_text).total_seconds()
        except ValueError as exc:
            raise ConfigError(f"Couldn't parse interval {interval_text!r}: {exc}") from exc

    multiplier = schedule.multiplier
    multiplier_text = _first(args.multiplier, environ.get("MULTIPLIER"))
    if multiplier_text is not None:
        try:
            multiplier = float(multiplier_text)
        except ValueError as exc:
            raise ConfigError(f"Couldn't parse multiplier {multiplier_text!r}") from exc

    schedule = schedule.with_overrides(
        dummy=bool(dummy),
        loop_first_day=bool(loop),
        conditions_path=Path(conditions) if conditions else None,
        interval_s=interval_s,
        multiplier=multiplier,
    )
    return config.with_overrides(device=device, metrics=metrics, schedule=schedule).validate()
