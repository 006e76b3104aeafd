[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rgbdvo"
version = "0.1.0"
description = "RGB-D visual odometry with SE(3) poses, a pinhole camera model, and direct and feature-based pose estimation"
requires-python = ">=3.10"
keywords = ["visual odometry", "slam", "rgb-d", "computer vision", "pose estimation", "direct method", "orb", "pnp"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Recognition",
]
dependencies = [
    "numpy",
    "pyyaml",
    "imageio",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
rgbdvo = "rgbdvo.vo:main"
rgbdvo-direct = "rgbdvo.direct:main"

[tool.hatch.build.targets.wheel]
packages = ["rgbdvo"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
