"""Synthetic scene generation for testing."""

from .scene_gen import SceneGenerator, SyntheticScene, make_resection_scene

__all__ = [
    "SceneGenerator",
    "SyntheticScene",
    "make_resection_scene",
]
