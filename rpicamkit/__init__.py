"""Still-image writers, video output sinks and simple encoders for camera frame buffers."""

__version__ = "1.10.0"