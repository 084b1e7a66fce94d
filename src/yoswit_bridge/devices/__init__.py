"""Device registry built from the cloud snapshot."""

from .registry import DeviceRegistry, ModuleInfo, build_module_info, classify_subdevice

__all__ = ["DeviceRegistry", "ModuleInfo", "build_module_info", "classify_subdevice"]
