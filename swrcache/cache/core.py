"""
Core cache data structures.
"""
from dataclasses import dataclass, field, fields, replace
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

from config.settings import Settings, settings

# producer(signal) -> awaitable value; the signal parameter is optional
Producer = Callable[..., Awaitable[Any]]
# subscriber(data, error)
Subscriber = Callable[[Any, Optional[BaseException]], None]


@dataclass(frozen=True)
class CacheOptions:
    """
    Effective options for one cache key.

    All durations are in seconds. Instances are immutable; per-call
    overrides are applied with ``merged()`` which returns a new instance.
    """
    retries: int = 2
    retry_delay: float = 0.3
    ttl: float = 300.0                 # 0 = never expire
    max_entries: int = 100
    revalidate_on_focus: bool = True
    revalidate_on_reconnect: bool = True
    refresh_interval: float = 0.0      # 0 = no polling
    refresh_when_hidden: bool = False
    refresh_when_offline: bool = False
    deduping_interval: float = 2.0
    cancel_on_revalidate: bool = False
    timeout: float = 0.0               # 0 = no timeout
    signal: Optional[Any] = field(default=None, compare=False)

    def __post_init__(self):
        if self.retries < 0:
            raise ValueError(f"retries must be >= 0, got {self.retries}")
        if self.max_entries < 0:
            raise ValueError(f"max_entries must be >= 0, got {self.max_entries}")
        for name in (
            "retry_delay",
            "ttl",
            "refresh_interval",
            "deduping_interval",
            "timeout",
        ):
            value = getattr(self, name)
            if value < 0:
                raise ValueError(f"{name} must be >= 0, got {value}")

    @classmethod
    def from_settings(cls, source: Optional[Settings] = None) -> "CacheOptions":
        """Build default options from application settings."""
        source = source or settings
        return cls(
            retries=source.retries,
            retry_delay=source.retry_delay,
            ttl=source.ttl,
            max_entries=source.max_entries,
            revalidate_on_focus=source.revalidate_on_focus,
            revalidate_on_reconnect=source.revalidate_on_reconnect,
            refresh_interval=source.refresh_interval,
            refresh_when_hidden=source.refresh_when_hidden,
            refresh_when_offline=source.refresh_when_offline,
            deduping_interval=source.deduping_interval,
            cancel_on_revalidate=source.cancel_on_revalidate,
            timeout=source.timeout,
        )

    def merged(self, overrides: Optional[Mapping[str, Any]] = None) -> "CacheOptions":
        """
        Overlay caller overrides onto these options.

        Raises:
            TypeError: If an override names an unknown option
            ValueError: If an override value is out of range
        """
        if not overrides:
            return self
        known = {f.name for f in fields(self)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise TypeError(f"Unknown cache option(s): {', '.join(unknown)}")
        return replace(self, **overrides)


OptionsLike = Union[CacheOptions, Mapping[str, Any], None]


def resolve_options(defaults: CacheOptions, options: OptionsLike = None) -> CacheOptions:
    """Resolve per-call options against the engine defaults, once per call."""
    if options is None:
        return defaults
    if isinstance(options, CacheOptions):
        return options
    return defaults.merged(options)


def persistent_options(options: CacheOptions) -> CacheOptions:
    """Options as stored on an entry; a per-call abort signal is not kept."""
    if options.signal is None:
        return options
    return replace(options, signal=None)


@dataclass
class CacheEntry:
    """
    A cached value with the metadata needed to refresh it.

    ``data`` is the last successfully produced value and ``error`` the most
    recent failure; both may be set at once.
    """
    data: Any
    timestamp: float
    producer: Producer
    options: CacheOptions
    error: Optional[BaseException] = None

    @property
    def has_data(self) -> bool:
        return self.data is not None

    def to_dict(self) -> Dict[str, Any]:
        """Summary used by diagnostics; data itself is not included."""
        return {
            "timestamp": self.timestamp,
            "has_data": self.has_data,
            "error": str(self.error) if self.error else None,
            "ttl": self.options.ttl,
            "refresh_interval": self.options.refresh_interval,
        }
