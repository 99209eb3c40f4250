from .package_settings import PackageSettings

__all__ = [
    "PackageSettings",
]
