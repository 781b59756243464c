"""Render layer: storage, ffmpeg invocation, progress, and the job engine."""
