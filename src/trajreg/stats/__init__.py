from .velocity import hold_last, smooth_gaussian, xy_speed

__all__ = ["hold_last", "smooth_gaussian", "xy_speed"]
