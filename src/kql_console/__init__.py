"""KQL Console - interactive runner for Log Analytics, threat-hunting and Resource Graph query libraries."""

__version__ = "1.0.0"
