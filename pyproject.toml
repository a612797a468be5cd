[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rpicamkit"
version = "1.10.0"
description = "Still-image writers, video output sinks and simple encoders for camera frame buffers"
requires-python = ">=3.10"
dependencies = [
    "pillow",
]
keywords = [
    "camera",
    "dng",
    "jpeg",
    "exif",
    "bmp",
    "png",
    "yuv",
    "mjpeg",
    "video",
    "circular-buffer",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Graphics :: Capture :: Digital Camera",
    "Topic :: Multimedia :: Video",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["rpicamkit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
