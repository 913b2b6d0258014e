"""
music-presence — mirrors Apple Music / iTunes now-playing state to Discord.

  service.py     — entry point: config, status endpoint, signal handling
  reconciler.py  — poll loop deciding what to send on each tick
  lib/           — bridge, fetch, stations, change detection, formatting, session
"""

__version__ = "1.0.0"
