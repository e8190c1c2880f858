"""
Virtual Try-On Engine

Two-stage pipeline:
1. Anchor - vision model hint with geometric fallback
2. Compositing - proportional placement and alpha blending
"""
