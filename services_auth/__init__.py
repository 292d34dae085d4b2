"""services-auth - Obtain service tokens through a PKCE authorization flow."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("services-auth")
except PackageNotFoundError:
    __version__ = "0.1.0"  # Fallback for development

__all__ = [
    "__version__",
    "Config",
    "load_config",
    "ServicesAuthManager",
    "ServiceToken",
    "OutputHandler",
]


# Lazy imports keep `svcauth --version` fast
def __getattr__(name: str) -> object:
    """Lazy import module components."""
    if name in ("Config", "load_config"):
        from .config import Config, load_config
        return {"Config": Config, "load_config": load_config}[name]
    elif name in ("ServicesAuthManager", "ServiceToken"):
        from .oauth import ServicesAuthManager, ServiceToken
        return {"ServicesAuthManager": ServicesAuthManager, "ServiceToken": ServiceToken}[name]
    elif name == "OutputHandler":
        from .output import OutputHandler
        return OutputHandler
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
