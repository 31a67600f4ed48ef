from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from .catalog import BuildpackCatalog, CatalogError
from .config import BuildConfig
from .errors import BuildpackError, EXIT_INTERNAL_ERROR, classify, exit_code_for, format_failure
from .lifecycle import BuildPaths, BuildpackDriver, Lifecycle


def _paths(args: argparse.Namespace) -> BuildPaths:
    return BuildPaths(
        application_root=Path(args.app_dir).resolve(),
        layers_root=Path(args.layers_dir).resolve(),
        report_dir=Path(args.report_dir).resolve() if args.report_dir else None,
    )


def _configure_logging(config: BuildConfig) -> None:
    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def cmd_list(args: argparse.Namespace, config: BuildConfig) -> int:
    catalog = BuildpackCatalog.from_file(args.order)
    for entry in catalog.entries():
        print(f"{entry.id}\t{entry.entrypoint}")
    return 0


def cmd_detect(args: argparse.Namespace, config: BuildConfig) -> int:
    buildpack = BuildpackCatalog.from_file(args.order).get(args.buildpack).load()
    driver = BuildpackDriver(buildpack, _paths(args), config)
    report = driver.detect()
    print(json.dumps(report.to_dict(), indent=2))
    return report.exit_code


def cmd_build(args: argparse.Namespace, config: BuildConfig) -> int:
    buildpack = BuildpackCatalog.from_file(args.order).get(args.buildpack).load()
    driver = BuildpackDriver(buildpack, _paths(args), config)
    driver.run()
    print(json.dumps([report.to_dict() for report in driver.reports], indent=2))
    return driver.exit_code


def cmd_run(args: argparse.Namespace, config: BuildConfig) -> int:
    buildpacks = BuildpackCatalog.from_file(args.order).load_all()
    result = Lifecycle(buildpacks, _paths(args), config).run()
    print(json.dumps([report.to_dict() for report in result.reports], indent=2))
    return result.exit_code


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Two-phase buildpack lifecycle runner")
    parser.add_argument(
        "--order",
        default="order.yaml",
        help="Path to the ordered buildpack list.",
    )
    parser.add_argument(
        "--app-dir",
        default=".",
        help="Source tree the buildpacks operate on.",
    )
    parser.add_argument(
        "--layers-dir",
        default=".packforge/layers",
        help="Directory holding persistent layers.",
    )
    parser.add_argument(
        "--report-dir",
        default=None,
        help="Optional directory for per-phase JSON reports.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    list_parser = subparsers.add_parser("list", help="List buildpacks in the order file")
    list_parser.set_defaults(func=cmd_list)

    for command, handler, help_text in (
        ("detect", cmd_detect, "Run the detection phase of one buildpack"),
        ("build", cmd_build, "Run detection and, on opt-in, the build phase of one buildpack"),
    ):
        phase_parser = subparsers.add_parser(command, help=help_text)
        phase_parser.add_argument("--buildpack", required=True)
        phase_parser.set_defaults(func=handler)

    run_parser = subparsers.add_parser("run", help="Run every buildpack in order")
    run_parser.set_defaults(func=cmd_run)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = BuildConfig.from_environ(os.environ, Path(args.app_dir))
    except BuildpackError as exc:
        print(format_failure(exc), file=sys.stderr)
        return exit_code_for(classify(exc))
    _configure_logging(config)
    try:
        return args.func(args, config)
    except CatalogError as exc:
        print(f"INTERNAL ERROR: {exc}", file=sys.stderr)
        return EXIT_INTERNAL_ERROR


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
