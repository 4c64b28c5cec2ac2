"""Atlas: live hour-by-hour playback of a balloon constellation feed."""

__version__ = "1.0.0"
