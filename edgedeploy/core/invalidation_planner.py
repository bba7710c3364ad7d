"""Turn a changed-path set into a cost-bounded invalidation plan.

CDN invalidations are billed per path pattern, so directories with many
changed files are collapsed into one ``dir/*`` wildcard. When even the
collapsed set exceeds the provider ceiling the plan falls back to a full
``/*`` invalidation.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from edgedeploy.models.config import DeploymentConfig
from edgedeploy.models.invalidations import InvalidationPlan

logger = logging.getLogger(__name__)

FULL_PATTERN = "/*"

PRESETS: dict[str, tuple[str, ...]] = {
    "full": (FULL_PATTERN,),
    "documents": ("/", "/index.html", "/*.html"),
    "assets": ("/_next/static/*", "/static/*", "/images/*"),
    "api": ("/api/*",),
}


def _normalize(path: str) -> str:
    path = path.strip().replace("\\", "/")
    if not path.startswith("/"):
        path = "/" + path
    return path


def _parent_dir(path: str) -> str:
    """``/blog/a.html`` -> ``/blog/``; ``/index.html`` -> ``/``."""
    return path[: path.rfind("/") + 1]


def _covered_by(path: str, wildcards: Iterable[str]) -> bool:
    for pattern in wildcards:
        if path != pattern and path.startswith(pattern[:-1]):
            return True
    return False


class InvalidationPlanner:
    """Computes invalidation patterns and their estimated cost.

    Parameters
    ----------
    config:
        Supplies the path ceiling, the wildcard threshold and the tiered
        per-path rates.
    """

    def __init__(self, config: DeploymentConfig | None = None) -> None:
        config = config or DeploymentConfig()
        self.max_paths = config.max_invalidation_paths
        self.wildcard_threshold = config.wildcard_threshold
        self.tier_size = config.invalidation_tier_size
        self.rate_first_tier = config.invalidation_rate_first_tier
        self.rate_second_tier = config.invalidation_rate_second_tier

    def estimate_cost(self, pattern_count: int) -> float:
        """Tiered cost: the first ``tier_size`` patterns at the first rate,
        the remainder at the second."""
        if pattern_count <= 0:
            return 0.0
        if pattern_count <= self.tier_size:
            return pattern_count * self.rate_first_tier
        return (
            self.tier_size * self.rate_first_tier
            + (pattern_count - self.tier_size) * self.rate_second_tier
        )

    def full_plan(self, raw_path_count: int = 0) -> InvalidationPlan:
        return InvalidationPlan(
            patterns=[FULL_PATTERN],
            estimated_cost=self.estimate_cost(1),
            raw_path_count=raw_path_count,
            full=True,
        )

    def plan(self, changed_paths: Iterable[str], *, full: bool = False) -> InvalidationPlan:
        """Build the plan for *changed_paths*.

        An empty input yields an empty plan, which callers treat as a no-op.
        """
        paths = sorted({_normalize(p) for p in changed_paths if p and p.strip()})
        if full or FULL_PATTERN in paths:
            return self.full_plan(len(paths))
        if not paths:
            return InvalidationPlan()

        wildcards = [p for p in paths if p.endswith("*")]
        explicit = [p for p in paths if not p.endswith("*") and not _covered_by(p, wildcards)]

        groups: dict[str, list[str]] = {}
        for path in explicit:
            groups.setdefault(_parent_dir(path), []).append(path)

        patterns: set[str] = set(wildcards)
        collapsed: list[str] = []
        for directory, members in sorted(groups.items()):
            if directory != "/" and len(members) >= self.wildcard_threshold:
                patterns.add(directory + "*")
                collapsed.append(directory)
            else:
                patterns.update(members)

        ordered = sorted(patterns)
        if len(ordered) > self.max_paths:
            logger.warning(
                "Invalidation needs %d patterns (ceiling %d); falling back to %s",
                len(ordered),
                self.max_paths,
                FULL_PATTERN,
            )
            return self.full_plan(len(paths))

        plan = InvalidationPlan(
            patterns=ordered,
            estimated_cost=self.estimate_cost(len(ordered)),
            raw_path_count=len(paths),
            collapsed_dirs=collapsed,
        )
        logger.debug(
            "Planned %d patterns from %d paths (%d collapsed dirs)",
            len(ordered),
            len(paths),
            len(collapsed),
        )
        return plan

    def preset(self, name: str) -> InvalidationPlan:
        """Plan for one of the operator presets in ``PRESETS``."""
        try:
            patterns = PRESETS[name]
        except KeyError:
            raise ValueError(
                f"Unknown invalidation preset {name!r}; expected one of {sorted(PRESETS)}"
            ) from None
        if patterns == (FULL_PATTERN,):
            return self.full_plan()
        return InvalidationPlan(
            patterns=list(patterns),
            estimated_cost=self.estimate_cost(len(patterns)),
            raw_path_count=len(patterns),
        )
