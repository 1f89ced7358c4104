"""Visual SLAM building blocks: Lie groups, geometry, curve fitting, pose graphs, dense mapping and stereo odometry components."""

__version__ = "0.1.0"