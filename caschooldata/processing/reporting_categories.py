"""
Demographic code map: CDE reporting category codes -> stable subgroup names.

Loaded once per process from config/reporting_categories.yaml and shared
read-only by every worker.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional, Tuple, Union

from caschooldata.utilities.common import CONFIG_DIR, load_yaml_config

logger = logging.getLogger(__name__)

REPORTING_CATEGORIES_PATH = CONFIG_DIR / "reporting_categories.yaml"

TOTAL_CATEGORY = "TA"
TOTAL_SUBGROUP = "total"
RACE_UNMAPPED = "RE_UNMAPPED"
GENDER_UNMAPPED = "GN_UNMAPPED"


@dataclass(frozen=True, eq=False)
class DemographicCodeMap:
    """
    Read-only code map.

    Attributes:
        subgroups: reporting category code -> subgroup name (ordered)
        race_codes: vocabulary name -> {raw race code -> RE_* category}
        gender_codes: raw gender code -> GN_* category
        partitions: partition name -> categories that sum to the total
    """
    subgroups: Mapping[str, str]
    race_codes: Mapping[str, Mapping[str, str]]
    gender_codes: Mapping[str, str]
    partitions: Mapping[str, Tuple[str, ...]]
    category_order: Mapping[str, int]

    def subgroup_for(self, code: str) -> str:
        """Subgroup name for a category code; unknown codes keep the raw code."""
        return self.subgroups.get(code, code)

    def is_known(self, code: str) -> bool:
        return code in self.subgroups

    def race_vocabulary(self, vocabulary: str) -> Mapping[str, str]:
        if vocabulary not in self.race_codes:
            raise KeyError(f"Unknown race code vocabulary: {vocabulary}")
        return self.race_codes[vocabulary]

    def sort_key(self, code: str) -> Tuple[int, str]:
        """Known codes in file order first, unknown codes after, alphabetically."""
        return (self.category_order.get(code, len(self.category_order)), code)


def _freeze(mapping: dict) -> Mapping[str, str]:
    return MappingProxyType({str(k): str(v) for k, v in mapping.items()})


def load_code_map(path: Optional[Union[str, Path]] = None) -> DemographicCodeMap:
    """
    Load a DemographicCodeMap from YAML.

    Args:
        path: YAML file (default: packaged reporting_categories.yaml)

    Returns:
        DemographicCodeMap backed by immutable mappings
    """
    config = load_yaml_config(path or REPORTING_CATEGORIES_PATH)

    subgroups = _freeze(config.get("subgroups", {}))
    race_codes = MappingProxyType({
        name: _freeze(codes) for name, codes in config.get("race_codes", {}).items()
    })
    gender_codes = _freeze(config.get("gender_codes", {}))
    partitions = MappingProxyType({
        name: tuple(codes) for name, codes in config.get("partitions", {}).items()
    })

    logger.debug(
        f"Loaded {len(subgroups)} reporting categories, "
        f"{len(race_codes)} race vocabularies from {path or REPORTING_CATEGORIES_PATH}"
    )
    return DemographicCodeMap(
        subgroups=subgroups,
        race_codes=race_codes,
        gender_codes=gender_codes,
        partitions=partitions,
        category_order=MappingProxyType({code: i for i, code in enumerate(subgroups)}),
    )


@lru_cache(maxsize=1)
def get_code_map() -> DemographicCodeMap:
    """The packaged code map, loaded once per process."""
    return load_code_map()


def map_reporting_category(code: str) -> str:
    """
    Map a reporting category code to its subgroup name.

    Examples:
        >>> map_reporting_category("RE_H")
        'hispanic'
        >>> map_reporting_category("XX_NEW")
        'XX_NEW'
    """
    return get_code_map().subgroup_for(code)
