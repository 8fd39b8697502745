from importlib import import_module

__all__ = [
    "lighter_client",
    "LighterClient",
    "market_resolver",
    "MarketResolver",
    "tracker_registry",
    "TrackerRegistry",
    "preference_store",
    "PreferenceStore",
]

_LAZY_EXPORTS = {
    "lighter_client": ("services.lighter_client", "lighter_client"),
    "LighterClient": ("services.lighter_client", "LighterClient"),
    "market_resolver": ("services.markets", "market_resolver"),
    "MarketResolver": ("services.markets", "MarketResolver"),
    "tracker_registry": ("services.account_tracker", "tracker_registry"),
    "TrackerRegistry": ("services.account_tracker", "TrackerRegistry"),
    "preference_store": ("services.preferences", "preference_store"),
    "PreferenceStore": ("services.preferences", "PreferenceStore"),
}


def __getattr__(name):
    if name not in _LAZY_EXPORTS:
        raise AttributeError(f"module 'services' has no attribute {name!r}")

    module_name, attr_name = _LAZY_EXPORTS[name]
    module = import_module(module_name)
    value = getattr(module, attr_name)
    globals()[name] = value
    return value
