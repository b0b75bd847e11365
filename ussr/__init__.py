"""Unity Splash Screen Remover.

Patches the splash screen and watermark flags of a built Unity player,
including WebGL builds whose data is packed into a UnityWebData container
and optionally brotli or gzip compressed.
"""

__version__ = "1.0.0"
