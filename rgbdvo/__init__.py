"""RGB-D visual odometry: SE(3) poses, a pinhole camera, and direct and feature-based tracking."""

__version__ = "0.1.0"