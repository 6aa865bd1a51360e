"""
Script-to-storyboard service.

A script is split into scenes, each scene gets a generated still image and
optionally an animated clip, and the whole board can be exported as a zip.
"""

__version__ = "0.1.0"
