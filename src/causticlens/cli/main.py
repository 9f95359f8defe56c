from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Any

from causticlens.api.pipeline import run_design
from causticlens.config import config_section, parse_config, read_config_data
from causticlens.exceptions import CausticError, ConfigurationError
from causticlens.logging_config import setup_logging

logger = logging.getLogger("causticlens.cli")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="causticlens")
    sub = parser.add_subparsers(dest="cmd", required=True)

    des = sub.add_parser("design", help="Compute a freeform lens whose caustic reproduces a target image.")
    des.add_argument("--config", type=Path, default=None, help="JSON config; flags below override its values.")
    des.add_argument("--in-src", type=Path, default=None, help="Source (incoming light) density image.")
    des.add_argument("--in-trg", type=Path, default=None, help="Target caustic image.")
    des.add_argument("--res", type=int, default=None, help="Grid resolution (default 100).")
    des.add_argument("--focal-l", type=float, default=None, help="Distance from lens to image plane (default 1).")
    des.add_argument("--refractive-index", type=float, default=None, help="Lens material index (default 1.55).")
    des.add_argument("--light", type=str, default=None, choices=["parallel", "point"])
    des.add_argument("--light-pos", type=float, nargs=3, default=None, metavar=("X", "Y", "Z"))
    des.add_argument(
        "--light-dir", type=float, nargs=3, default=None, metavar=("X", "Y", "Z"), help="Direction of parallel light."
    )
    des.add_argument("--surface", type=str, default=None, choices=["refractive", "reflective"])
    des.add_argument("--rotate", type=float, nargs=3, default=None, metavar=("X", "Y", "Z"), help="Image plane rotation (deg).")
    des.add_argument("--translate", type=float, nargs=3, default=None, metavar=("X", "Y", "Z"))
    des.add_argument("--rounds", type=int, default=None, help="Maximum refinement rounds (default 10).")
    des.add_argument("--tol", type=float, default=None, help="Stop early when max height change < tol (0 disables).")
    des.add_argument("--workers", type=int, default=None, help="Threads for the normal computation.")
    des.add_argument("--thickness", type=float, default=None, help="Base thickness of the exported solid (default 0.2).")
    des.add_argument("--out", type=Path, default=None, help="Output OBJ path (default output.obj).")
    des.add_argument("--export-svg", action="store_true", help="Also write the target grid as SVG.")
    des.add_argument("--export-design", type=Path, default=None, help="Directory for design.json + arrays.npz.")
    des.add_argument("--log-file", type=Path, default=None)
    des.add_argument("-v", "--verbose", action="store_true")
    return parser


def _config_data(args: argparse.Namespace) -> dict[str, Any]:
    data: dict[str, Any] = read_config_data(args.config) if args.config is not None else {}
    optics = dict(config_section(data, "optics"))
    refinement = dict(config_section(data, "refinement"))

    top = {
        "source_path": args.in_src,
        "target_path": args.in_trg,
        "resolution": args.res,
        "thickness": args.thickness,
        "out_path": args.out,
        "export_design": args.export_design,
    }
    data.update({k: (str(v) if isinstance(v, Path) else v) for k, v in top.items() if v is not None})
    if args.export_svg:
        data["export_svg"] = True

    for key, value in (
        ("focal_length", args.focal_l),
        ("refractive_index", args.refractive_index),
        ("light_model", args.light),
        ("light_position", args.light_pos),
        ("light_direction", args.light_dir),
        ("surface_model", args.surface),
        ("rotation_deg", args.rotate),
        ("translation", args.translate),
    ):
        if value is not None:
            optics[key] = value
    for key, value in (("max_rounds", args.rounds), ("tolerance", args.tol), ("workers", args.workers)):
        if value is not None:
            refinement[key] = value

    data["optics"] = optics
    data["refinement"] = refinement
    return data


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "design":
        setup_logging(logging.DEBUG if args.verbose else logging.INFO, args.log_file)
        try:
            config = parse_config(_config_data(args))
        except ConfigurationError as e:
            logger.error("invalid input: %s", e)
            parser.print_usage()
            return 2

        try:
            written = run_design(config)
        except CausticError as e:
            logger.error("%s -> abort.", e)
            return 1
        for p in written:
            print(f"Wrote {p}")
        return 0

    raise AssertionError(f"Unhandled cmd: {args.cmd}")
