import os
from dataclasses import dataclass, field

from spotheus.aggregator import DEFAULT_GROUP_BY
from spotheus.label_cache import DEFAULT_TTL_SECONDS
from spotheus.labels import LabelMappings

LABEL_SOURCES = ("billing", "kubernetes")


@dataclass
class Config:
    # listen_address: format ":8080" or
    # "0.0.0.0:8080"
    listen_address: "str" = ":8080"
    log_level: "str" = "info"
    # console or json
    log_format: "str" = "console"
    # seconds a scrape waits for a collection pass
    scrape_timeout: "float" = 30.0

    spotinst_token: "str" = ""
    spotinst_account: "str" = ""

    group_by: "str" = DEFAULT_GROUP_BY
    label_mappings: "LabelMappings" = field(default_factory=LabelMappings)
    # where labels come from: inline billing labels or
    # the kubernetes API
    label_source: "str" = "billing"
    # seconds between label cache populations
    label_refresh_interval: "int" = 600
    label_ttl: "int" = DEFAULT_TTL_SECONDS

    @classmethod
    def from_env(cls) -> "Config":
        """
        reads credentials and the label settings from the environment.
        Raises LabelMappingError for malformed SPOTINST_LABEL_MAPPINGS.
        """
        mappings = os.environ.get("SPOTINST_LABEL_MAPPINGS", "")
        return cls(
            spotinst_token=os.environ.get("SPOTINST_TOKEN", ""),
            spotinst_account=os.environ.get("SPOTINST_ACCOUNT", ""),
            label_mappings=(
                LabelMappings.parse(mappings) if mappings else LabelMappings()
            ),
            label_source=os.environ.get("SPOTINST_LABEL_SOURCE", "billing"),
        )
