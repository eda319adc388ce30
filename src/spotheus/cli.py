import argparse

from spotheus.config import LABEL_SOURCES, Config
from spotheus.errors import LabelMappingError
from spotheus.labels import LabelMappings


def _label_mappings(value: "str") -> "LabelMappings":
    try:
        return LabelMappings.parse(value)
    except LabelMappingError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def _positive_int(value: "str") -> "int":
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be > 0, got {number}")
    return number


def parse_args(argv: "list[str] | None" = None) -> "Config":
    parser = argparse.ArgumentParser(
        prog="spotheus",
        description="Spot Ocean cost and right-sizing Prometheus exporter",
    )
    parser.add_argument(
        "--web.listen-address",
        dest="listen_address",
        default=":8080",
        help="Address to listen on (default: :8080)",
    )
    parser.add_argument(
        "--scrape.timeout",
        dest="scrape_timeout",
        type=float,
        default=30.0,
        help="Seconds a scrape waits for collection (default: 30)",
    )
    parser.add_argument(
        "--log.level",
        dest="log_level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info)",
    )
    parser.add_argument(
        "--log.format",
        dest="log_format",
        default="console",
        choices=["console", "json"],
        help="Log format (default: console)",
    )
    parser.add_argument(
        "--cost.group-by",
        dest="group_by",
        default=None,
        help="Resource label the workload costs are grouped by "
        "(default: resource.label.app.kubernetes.io/name)",
    )
    parser.add_argument(
        "--label-mapping",
        dest="label_mappings",
        type=_label_mappings,
        action="append",
        default=[],
        metavar="RESOURCE-LABEL[=PROMETHEUS-LABEL]",
        help="Resource labels to add to namespace and workload metrics, "
        "comma separated. Can be repeated.",
    )
    parser.add_argument(
        "--label-source",
        dest="label_source",
        default=None,
        choices=LABEL_SOURCES,
        help="Where resource labels are read from (default: billing)",
    )
    parser.add_argument(
        "--label-cache.refresh-interval",
        dest="label_refresh_interval",
        type=_positive_int,
        default=600,
        help="Seconds between label cache populations (default: 600)",
    )
    parser.add_argument(
        "--label-cache.ttl",
        dest="label_ttl",
        type=_positive_int,
        default=3600,
        help="Seconds a cached label set stays valid (default: 3600)",
    )

    args = parser.parse_args(argv)
    try:
        config = Config.from_env()
    except LabelMappingError as e:
        parser.error(f"SPOTINST_LABEL_MAPPINGS: {e}")

    if config.label_source not in LABEL_SOURCES:
        parser.error(f"SPOTINST_LABEL_SOURCE: invalid choice {config.label_source!r}")

    config.listen_address = args.listen_address
    config.scrape_timeout = args.scrape_timeout
    config.log_level = args.log_level
    config.log_format = args.log_format
    config.label_refresh_interval = args.label_refresh_interval
    config.label_ttl = args.label_ttl
    if args.group_by:
        config.group_by = args.group_by
    if args.label_source:
        config.label_source = args.label_source
    for mappings in args.label_mappings:
        config.label_mappings.extend(mappings)
    return config
