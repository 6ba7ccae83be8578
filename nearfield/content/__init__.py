"""Authored story content shipped with the package."""

from .demo_story import DEMO_BRIEFS, DEMO_SCRIPTS, STORY_ID  # noqa: F401
