"""Strategy registry: discover and load strategies by name."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from digitbot.config.settings import BotConfig
    from digitbot.strategies.base import BaseStrategy

_REGISTRY: dict[str, type[BaseStrategy]] = {}


def register(name: str) -> Any:
    """Decorator to register a strategy class.

    Usage:
        @register("even_odd")
        class EvenOddStrategy(BaseStrategy):
            ...
    """

    def decorator(cls: type[BaseStrategy]) -> type[BaseStrategy]:
        _REGISTRY[name] = cls
        return cls

    return decorator


def get(name: str) -> type[BaseStrategy]:
    """Get a strategy class by registered name.

    Raises:
        KeyError: If strategy name is not registered.
    """
    if name not in _REGISTRY:
        available = ", ".join(sorted(_REGISTRY.keys())) or "(none)"
        msg = f"Unknown strategy '{name}'. Available: {available}"
        raise KeyError(msg)
    return _REGISTRY[name]


def create(name: str, config: BotConfig) -> BaseStrategy:
    """Create a strategy instance by name.

    Raises:
        KeyError: If strategy name is not registered.
        ConfigError: If the config's params or modes do not fit the strategy.
    """
    cls = get(name)
    return cls(config=config, strategy_id=name)


def list_strategies() -> list[str]:
    """List all registered strategy names."""
    return sorted(_REGISTRY.keys())


def load_builtin() -> None:
    """Import the bundled strategy modules so they register themselves."""
    import digitbot.strategies.even_odd
    import digitbot.strategies.mode_switch
    import digitbot.strategies.over_under  # noqa: F401
