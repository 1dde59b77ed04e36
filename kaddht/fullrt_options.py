"""Options for the full routing table DHT client and the quorum routing option."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, MutableMapping

DEFAULT_QUORUM = 0
_QUORUM_KEY = object()


class OptionError(ValueError):
    """Raised when an option is given an invalid value."""


@dataclass
class FullRTConfig:
    """Settings of a full routing table DHT client. Durations are in seconds."""

    dht_opts: list[Any] = field(default_factory=list)
    crawl_interval: float = 3600.0
    wait_frac: float = 0.3
    bulk_send_parallelism: int = 20
    timeout_per_op: float = 5.0
    crawler: Any = None
    pm_opts: tuple[Any, ...] = ()

    def apply(self, *args: Callable[[FullRTConfig], None]) -> None:
        """Apply options in order; an invalid one raises OptionError naming its index."""
        for index, option in enumerate(args):
            try:
                option(self)
            except OptionError as err:
                raise OptionError(f"fullrt dht option {index} failed: {err}") from err


Option = Callable[[FullRTConfig], None]


def dht_option(*args: Any) -> Option:
    """Pass options on to the underlying DHT configuration."""

    def apply(cfg: FullRTConfig) -> None:
        cfg.dht_opts.extend(args)

    return apply


def with_crawler(crawler: Any) -> Option:
    """Use ``crawler`` to crawl the network."""

    def apply(cfg: FullRTConfig) -> None:
        cfg.crawler = crawler

    return apply


def with_crawl_interval(interval: float) -> Option:
    """Crawl the network every ``interval`` seconds."""

    def apply(cfg: FullRTConfig) -> None:
        cfg.crawl_interval = interval

    return apply


def with_success_wait_fraction(fraction: float) -> Option:
    """Fraction of peers, in (0, 1], to wait for before an operation counts as done."""

    def apply(cfg: FullRTConfig) -> None:
        if fraction <= 0 or fraction > 1:
            raise OptionError(
                "success wait fraction must be larger than 0 and smaller or equal to 1; "
                f"got: {fraction:f}"
            )
        cfg.wait_frac = fraction

    return apply


def with_bulk_send_parallelism(parallelism: int) -> Option:
    """Maximum number of peers messaged at once in bulk sends; at least 1."""

    def apply(cfg: FullRTConfig) -> None:
        if parallelism < 1:
            raise OptionError(f"bulk send parallelism must be at least 1; got: {parallelism}")
        cfg.bulk_send_parallelism = parallelism

    return apply


def with_timeout_per_operation(timeout: float) -> Option:
    """Timeout in seconds for each put or query operation."""

    def apply(cfg: FullRTConfig) -> None:
        cfg.timeout_per_op = timeout

    return apply


def with_provider_manager_options(*args: Any) -> Option:
    """Options used when creating the provider manager; replaces earlier ones."""

    def apply(cfg: FullRTConfig) -> None:
        cfg.pm_opts = args

    return apply


def quorum(count: int) -> Callable[[MutableMapping[Any, Any]], None]:
    """A routing option asking for ``count`` matching responses."""

    def apply(options: MutableMapping[Any, Any]) -> None:
        options[_QUORUM_KEY] = count

    return apply


def get_quorum(options: MutableMapping[Any, Any]) -> int:
    """The quorum set in routing ``options``, or 0 if none is set."""
    value = options.get(_QUORUM_KEY)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return DEFAULT_QUORUM