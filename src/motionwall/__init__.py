"""MotionWall - video and animation desktop backgrounds for X11."""

__version__ = "1.0.0"
